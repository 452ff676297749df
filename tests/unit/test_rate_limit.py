from finbot_analytics.middleware.rate_limit import DEFAULT_COST, RequestBudget, request_cost


def test_route_costs():
    assert request_cost("/analytics/cohorts") == 5
    assert request_cost("/analytics/cohorts/") == 5
    assert request_cost("/notifications/preview") == 2
    assert request_cost("/notifications/queue/status") == DEFAULT_COST


def test_budget_is_spent_by_cost():
    budget = RequestBudget(limit=10, period=60)

    first = budget.spend("ip:1", 5, now=100.0)
    second = budget.spend("ip:1", 4, now=101.0)
    third = budget.spend("ip:1", 2, now=102.0)

    assert (first.allowed, first.remaining) == (True, 5)
    assert (second.allowed, second.remaining) == (True, 1)
    assert (third.allowed, third.remaining) == (False, 1)
    # A cheaper request still fits
    assert budget.spend("ip:1", 1, now=103.0).allowed


def test_budget_window_slides():
    budget = RequestBudget(limit=5, period=60)
    budget.spend("ip:1", 5, now=100.0)

    assert not budget.spend("ip:1", 1, now=159.0).allowed
    decision = budget.spend("ip:1", 5, now=160.0)
    assert decision.allowed
    assert decision.remaining == 0


def test_clients_have_separate_budgets():
    budget = RequestBudget(limit=5, period=60)
    budget.spend("ip:1", 5, now=100.0)

    assert budget.spend("ip:2", 5, now=100.0).allowed


def test_idle_clients_are_forgotten():
    budget = RequestBudget(limit=10, period=60)
    for n in range(50):
        budget.spend(f"ip:{n}", 1, now=100.0)
    assert budget.tracked_clients == 50

    budget.spend("ip:active", 1, now=200.0)

    assert budget.tracked_clients == 1


def test_request_costlier_than_limit_leaves_no_state():
    budget = RequestBudget(limit=3, period=60)

    decision = budget.spend("ip:1", 5, now=100.0)

    assert not decision.allowed
    assert decision.remaining == 3
    assert budget.tracked_clients == 0
