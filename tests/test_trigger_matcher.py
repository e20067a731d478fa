import pytest

from executor.trigger_matcher import TriggerMatcher
from models.trigger_event import TriggerEvent
from models.workflow import WorkflowDefinition


def _definition(trigger_type="chat_message", settings=None, conditions=None, **kwargs):
    return WorkflowDefinition.model_validate({
        "id": kwargs.pop("id", "wf"),
        "name": "Trigger test",
        "trigger_type": trigger_type,
        "trigger_conditions": {"settings": settings or {}, "conditions": conditions or []},
        **kwargs,
    })


def _event(event_type="chat_message", /, **payload):
    return TriggerEvent(id="evt-1", type=event_type, payload=payload)


@pytest.fixture
def matcher():
    return TriggerMatcher()


def test_trigger_type_must_match(matcher):
    definition = _definition("chat_message")
    assert matcher.match(_event("chat_message"), [definition]) == [definition]
    assert matcher.match(_event("webhook"), [definition]) == []


def test_inactive_definitions_never_match(matcher):
    assert matcher.match(_event(), [_definition(active=False)]) == []


def test_time_trigger_matches_time_based(matcher):
    definition = _definition("time_based")
    assert matcher.matches(_event("time_trigger"), definition)
    assert not matcher.matches(_event("time_trigger"), _definition("chat_message"))


def test_sentiment_threshold(matcher):
    definition = _definition(settings={"sentiment_threshold": -0.5})
    assert matcher.matches(_event(sentiment_score=-0.8), definition)
    assert matcher.matches(_event(sentiment_score=-0.5), definition)
    assert not matcher.matches(_event(sentiment_score=0.2), definition)
    assert not matcher.matches(_event(), definition)


def test_keywords_case_handling(matcher):
    insensitive = _definition(settings={"keywords": ["refund", "cancel"]})
    assert matcher.matches(_event(message="I want a REFUND now"), insensitive)
    assert not matcher.matches(_event(message="thanks!"), insensitive)

    sensitive = _definition(settings={"keywords": ["Refund"], "case_sensitive": True})
    assert matcher.matches(_event(content="Refund please"), sensitive)
    assert not matcher.matches(_event(content="refund please"), sensitive)


def test_min_value_and_aliases(matcher):
    assert matcher.matches(_event("customer_action", amount=150), _definition("customer_action", settings={"min_value": 100}))
    assert not matcher.matches(_event("customer_action", amount=50), _definition("customer_action", settings={"min_value": 100}))
    assert matcher.matches(
        _event("integration_change", total_price="250.00"),
        _definition("integration_change", settings={"min_order_value": 200}),
    )


def test_customer_tier_filters(matcher):
    tiers = _definition(settings={"customer_tier": ["gold", "premium"]})
    assert matcher.matches(_event(customer={"tier": "Premium"}), tiers)
    assert not matcher.matches(_event(customer_tier="basic"), tiers)

    premium_only = _definition(settings={"premium_tier_only": True})
    assert matcher.matches(_event(customer={"tier": "enterprise"}), premium_only)
    assert not matcher.matches(_event(), premium_only)


def test_integration_source_and_event_type(matcher):
    definition = _definition(
        "integration_change",
        settings={"integration_source": "shopify", "event_type": "order_created"},
    )
    assert matcher.matches(_event("integration_change", integration_source="shopify", event_type="order_created"), definition)
    assert not matcher.matches(_event("integration_change", integration_source="hubspot", event_type="order_created"), definition)
    assert not matcher.matches(_event("integration_change", integration_source="shopify", event_type="order_paid"), definition)


def test_trigger_conditions_see_settings_and_event(matcher):
    definition = _definition(
        settings={"threshold": 3},
        conditions=[
            {"field": "retries", "operator": "greater_equal", "value": 3, "type": "number"},
            {"field": "trigger_event.source", "operator": "equals", "value": "api"},
        ],
    )
    assert matcher.matches(_event(retries=4), definition)
    assert not matcher.matches(_event(retries=1), definition)


def test_match_keeps_every_matching_definition(matcher):
    first = _definition(id="a")
    second = _definition(id="b", settings={"keywords": ["help"]})
    third = _definition(id="c", trigger_type="webhook")
    matched = matcher.match(_event(message="help me"), [first, second, third])
    assert [d.id for d in matched] == ["a", "b"]


def test_malformed_definition_does_not_match(matcher):
    bad = _definition(settings={"sentiment_threshold": "very negative"})
    good = _definition(id="good")
    assert matcher.match(_event(sentiment_score=-1), [bad, good]) == [good]
