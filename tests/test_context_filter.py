"""
Tests for intent-driven context reduction.
"""

import pytest

from propbot.config import ContextConfig
from propbot.context_filter import (
    GENERAL_FIELDS,
    ContextFilter,
    SourceRow,
    build_context_text,
    estimate_tokens,
    group_by_table,
    infer_table,
    serialized_size,
)
from propbot.intent_classifier import INTENT_PROFILES, IntentClassifier, IntentType


def plan_row(i, **extra):
    fields = {
        'id': i,
        'name': f"Plan {i}K",
        'account_size': i * 1000,
        'evaluation_fee': 100 + i,
        'activation_fee': 50,
        'price_total': 150 + i,
        'max_contracts': 4,
        'profit_target': 1500,
        'drawdown_type': 'trailing',
    }
    fields.update(extra)
    return SourceRow('account_plans', fields)


def faq_row(i, question, answer):
    return SourceRow('faqs', {'id': i, 'question': question, 'answer': answer, 'slug': f"faq-{i}"})


def other_faqs(count, start=100):
    return [faq_row(start + i, f"Pregunta {i}", f"Respuesta {i}") for i in range(count)]


def price_faqs(count, start=1):
    return [faq_row(start + i, f"¿Cuál es el precio {i}?", "Depende del plan") for i in range(count)]


def mixed_rows():
    """Two rows per profiled table with every field any intent reads, plus one nobody reads."""
    columns = {}
    for profile in INTENT_PROFILES:
        for table, fields in profile.required_fields.items():
            columns.setdefault(table, set()).update(fields)
    for table, fields in GENERAL_FIELDS.items():
        columns.setdefault(table, set()).update(fields)

    rows = []
    for table, fields in columns.items():
        for i in (1, 2):
            values = {name: f"{table} {name} {i}" for name in sorted(fields)}
            values.update(id=i, internal_notes="nota interna")
            rows.append(SourceRow(table, values))
    return rows


NON_GENERAL_PROFILES = [p for p in INTENT_PROFILES if p.type != IntentType.GENERAL]
PLATFORM_QUESTION = "que plataforma y broker usa, ninjatrader o tradovate?"


class TestTableInference:
    """Test suite for untagged row classification."""

    @pytest.mark.parametrize("row,table", [
        ({'evaluation_fee': 100}, 'account_plans'),
        ({'account_size': 50000, 'max_drawdown': 2500}, 'account_plans'),
        ({'daily_drawdown': 1100}, 'trading_rules'),
        ({'payout_frequency': 'semanal'}, 'payout_policies'),
        ({'question': 'q', 'answer_md': 'a'}, 'faqs'),
        ({'platform_type': 'futures'}, 'platforms'),
        ({'code': 'X', 'percentage': 10}, 'discounts'),
        ({'question': 'q'}, 'unknown'),
        ({}, 'unknown'),
    ])
    def test_infer_table(self, row, table):
        assert infer_table(row) == table

    def test_group_by_table_prefers_tags(self):
        """Test that a tagged row keeps its table even if its fields look different."""
        rows = [
            SourceRow('discounts', {'evaluation_fee': 1}),
            {'evaluation_fee': 2},
        ]

        grouped = group_by_table(rows)

        assert grouped == {
            'discounts': [{'evaluation_fee': 1}],
            'account_plans': [{'evaluation_fee': 2}],
        }


class TestFilterByIntent:
    """Test suite for ContextFilter.filter_by_intent."""

    @pytest.fixture
    def context_filter(self):
        return ContextFilter()

    def test_pricing_keeps_only_price_fields(self, context_filter):
        """Test that pricing rows keep id plus the price fields and other tables drop."""
        rows = [
            plan_row(25),
            plan_row(50),
            SourceRow('payout_policies', {'id': 1, 'profit_split_phase1': 100, 'payout_frequency': 'semanal'}),
            SourceRow('trading_rules', {'id': 1, 'max_drawdown': 2500}),
        ]

        filtered = context_filter.filter_by_intent(rows, IntentType.PRICING)

        assert set(filtered) == {'account_plans'}
        allowed = {'id', 'name', 'evaluation_fee', 'activation_fee', 'account_size', 'price_total'}
        for record in filtered['account_plans']:
            assert set(record) <= allowed
            assert 'max_contracts' not in record
        assert filtered['account_plans'][0]['id'] == 25

    @pytest.mark.parametrize("profile", NON_GENERAL_PROFILES, ids=lambda p: p.type.value)
    def test_projection_only_keeps_required_fields(self, context_filter, profile):
        """Test that every kept field besides id is one the intent lists for its table."""
        filtered = context_filter.filter_by_intent(mixed_rows(), profile.type)

        assert set(filtered) == set(profile.required_fields)
        for table, records in filtered.items():
            for record in records:
                assert set(record) - {'id'} <= set(profile.required_fields[table])

    def test_accepts_intent_name(self, context_filter):
        filtered = context_filter.filter_by_intent([plan_row(25)], 'pricing')

        assert 'account_plans' in filtered

    def test_drops_id_only_records(self, context_filter):
        """Test that a record with no relevant field is removed, and so is its empty table."""
        rows = [SourceRow('account_plans', {'id': 7, 'max_contracts': 4})]

        filtered = context_filter.filter_by_intent(rows, IntentType.PRICING)

        assert filtered == {}

    def test_none_values_are_skipped(self, context_filter):
        rows = [plan_row(25, activation_fee=None)]

        filtered = context_filter.filter_by_intent(rows, IntentType.PRICING)

        assert 'activation_fee' not in filtered['account_plans'][0]

    def test_untagged_rows(self, context_filter):
        rows = [{'id': 1, 'evaluation_fee': 100, 'account_size': 25000, 'max_contracts': 3}]

        filtered = context_filter.filter_by_intent(rows, IntentType.PRICING)

        assert filtered == {'account_plans': [{'id': 1, 'evaluation_fee': 100, 'account_size': 25000}]}

    def test_faq_backfill_when_few_match(self, context_filter):
        """Test that fewer than 3 relevant FAQs get topped up with up to 5 others."""
        rows = price_faqs(2) + other_faqs(7)

        filtered = context_filter.filter_by_intent(rows, IntentType.PRICING)

        faqs = filtered['faqs']
        assert len(faqs) == 7
        assert [f['question'] for f in faqs[:2]] == ["¿Cuál es el precio 0?", "¿Cuál es el precio 1?"]

    def test_no_backfill_when_enough_match(self, context_filter):
        rows = price_faqs(3) + other_faqs(5)

        filtered = context_filter.filter_by_intent(rows, IntentType.PRICING)

        assert len(filtered['faqs']) == 3

    def test_faq_cap(self, context_filter):
        rows = price_faqs(12)

        filtered = context_filter.filter_by_intent(rows, IntentType.PRICING)

        assert len(filtered['faqs']) == 8

    def test_faq_projection_keeps_question_and_answer(self, context_filter):
        filtered = context_filter.filter_by_intent(price_faqs(1), IntentType.PRICING)

        assert set(filtered['faqs'][0]) == {'id', 'question', 'answer'}

    def test_general_limits_rows(self, context_filter):
        """Test that the general intent keeps at most 3 rows per table with the general fields."""
        rows = (
            [plan_row(i) for i in range(1, 6)]
            + [SourceRow('trading_rules', {'id': i, 'rule_name': f"R{i}", 'max_drawdown': 2000}) for i in range(5)]
            + other_faqs(5)
        )

        filtered = context_filter.filter_by_intent(rows, IntentType.GENERAL)

        assert set(filtered) == {'account_plans', 'trading_rules', 'faqs'}
        for table, records in filtered.items():
            assert len(records) <= 3
            for record in records:
                assert set(record) <= set(GENERAL_FIELDS[table]) | {'id'}


class TestSafeFilter:
    """Test suite for the less aggressive rebuild."""

    def test_caps_and_full_rows(self):
        context_filter = ContextFilter()
        rows = [plan_row(i, phase=None) for i in range(12)] + other_faqs(15)

        safe = context_filter.safe_filter(rows, IntentType.PAYOUT)

        assert len(safe['account_plans']) == 8
        assert len(safe['faqs']) == 10
        assert 'max_contracts' in safe['account_plans'][0]
        assert 'phase' not in safe['account_plans'][0]

    def test_required_tables_are_not_capped(self):
        rows = [plan_row(i) for i in range(12)]

        safe = ContextFilter().safe_filter(rows, IntentType.PRICING)

        assert len(safe['account_plans']) == 12

    def test_relevant_faqs_come_first(self):
        rows = other_faqs(12) + price_faqs(2)

        safe = ContextFilter().safe_filter(rows, IntentType.PRICING)

        assert len(safe['faqs']) == 10
        assert [f['question'] for f in safe['faqs'][:2]] == ["¿Cuál es el precio 0?", "¿Cuál es el precio 1?"]
        assert safe['faqs'][0]['slug'] == "faq-1"

    @pytest.mark.parametrize("intent_type", list(IntentType), ids=lambda t: t.value)
    def test_contains_the_intent_filter_result(self, intent_type):
        """Test that the safe payload holds every filtered record in full and is strictly larger."""
        context_filter = ContextFilter()
        rows = mixed_rows()

        filtered = context_filter.filter_by_intent(rows, intent_type)
        safe = context_filter.safe_filter(rows, intent_type)

        assert serialized_size(safe) > serialized_size(filtered)
        for table, records in filtered.items():
            safe_by_id = {record['id']: record for record in safe[table]}
            for record in records:
                assert record.items() <= safe_by_id[record['id']].items()

    def test_keeps_every_profiled_table(self):
        safe = ContextFilter().safe_filter(mixed_rows(), IntentType.GENERAL)

        assert {'prop_firms', 'restrictions', 'firm_platforms', 'data_feeds'} <= set(safe)

    def test_keeps_tables_the_intent_ignores(self):
        rows = [
            SourceRow('platforms', {'id': 1, 'name': 'NinjaTrader', 'platform_type': 'futures'}),
            SourceRow('discounts', {'id': 1, 'code': 'SAVE', 'percentage': 50}),
        ]

        safe = ContextFilter().safe_filter(rows, IntentType.DRAWDOWN)

        assert set(safe) == {'platforms', 'discounts'}


class TestOptimize:
    """Test suite for ContextFilter.optimize."""

    def test_large_payload_is_reduced(self):
        """Test that enough data stays filtered and reports a positive reduction."""
        context_filter = ContextFilter()
        rows = [plan_row(i, description="Cuenta de evaluación con reglas detalladas " * 3) for i in range(1, 41)]

        result = context_filter.optimize("cuanto cuesta la cuenta de 100k en apex?", rows, "Apex Trader Funding")

        assert result.intent.type == IntentType.PRICING
        assert not result.metrics.safeguard_activated
        assert 0 < result.token_reduction_percent < 100
        assert result.metrics.optimized_tokens >= 200
        assert result.metrics.original_tokens > result.metrics.optimized_tokens
        assert 'description' not in result.data['account_plans'][0]
        assert "Apex Trader Funding" in result.context_text

    def test_safeguard_on_over_reduction(self):
        """Test that a tiny filtered payload is rebuilt with the safe filter."""
        context_filter = ContextFilter()
        rows = [plan_row(25)]

        result = context_filter.optimize("cuanto cuesta apex", rows)

        assert result.metrics.safeguard_activated
        assert 'max_contracts' in result.data['account_plans'][0]
        assert result.metrics.optimized_tokens == estimate_tokens(serialized_size(result.data))
        assert context_filter.get_stats()['safeguard_activations'] == 1

    def test_safeguard_never_shrinks_context(self):
        """Test that platform data kept by the intent filter survives the safe rebuild."""
        context_filter = ContextFilter()
        rows = [
            SourceRow('firm_platforms', {'id': 1, 'platform_id': 3, 'is_available': True, 'additional_cost': 0}),
            SourceRow('data_feeds', {'id': 1, 'name': 'Rithmic', 'type': 'market_data', 'cost': 0}),
        ]
        filtered = context_filter.filter_by_intent(rows, IntentType.PLATFORMS)

        result = context_filter.optimize(PLATFORM_QUESTION, rows)

        assert result.intent.type == IntentType.PLATFORMS
        assert result.metrics.safeguard_activated
        assert set(result.data) == {'firm_platforms', 'data_feeds'}
        assert result.data['firm_platforms'][0]['platform_id'] == 3
        assert serialized_size(result.data) > serialized_size(filtered)

    def test_safeguard_keeps_filtered_payload_when_nothing_more(self):
        feed = {'id': 1, 'name': 'Rithmic', 'type': 'market_data', 'cost': 0}

        result = ContextFilter().optimize(PLATFORM_QUESTION, [SourceRow('data_feeds', feed)])

        assert result.metrics.safeguard_activated
        assert result.data == {'data_feeds': [feed]}

    def test_gibberish_uses_general_rows(self):
        """Test that an unclassifiable question keeps at most 3 rows per table."""
        context_filter = ContextFilter(ContextConfig(min_context_tokens=0))
        rows = [plan_row(i) for i in range(1, 6)] + other_faqs(5)

        result = context_filter.optimize("xyz123 unrelated gibberish", rows)

        assert result.intent.type == IntentType.GENERAL
        assert result.intent.confidence == 0
        assert not result.metrics.safeguard_activated
        assert all(len(records) <= 3 for records in result.data.values())

    def test_empty_input_does_not_raise(self):
        result = ContextFilter().optimize("", [])

        assert result.intent.type == IntentType.GENERAL
        assert result.data == {}
        assert result.token_reduction_percent == 0.0

    def test_uses_given_classifier(self):
        classifier = IntentClassifier(confidence_floor=0.99)
        context_filter = ContextFilter(classifier=classifier)

        result = context_filter.optimize("cuanto cuesta apex", [plan_row(25)])

        assert result.intent.type == IntentType.GENERAL

    def test_stats(self):
        context_filter = ContextFilter()

        context_filter.optimize("cuanto cuesta apex", [plan_row(25)])
        context_filter.optimize("xyz", [plan_row(50)])

        stats = context_filter.get_stats()
        assert stats['total_optimizations'] == 2
        assert stats['intent_distribution'] == {'pricing': 1, 'general': 1}


class TestContextText:
    """Test suite for the prompt body."""

    def test_sections(self):
        profile = IntentClassifier().get_profile(IntentType.PRICING)
        filtered = {
            'account_plans': [{'name': '25K', 'evaluation_fee': 159}],
            'faqs': [{'question': '¿Precio?', 'answer': '159 USD'}],
        }

        text = build_context_text(filtered, profile, "Apex Trader Funding")

        assert text.startswith("Información de Apex Trader Funding sobre precios y costos de cuentas")
        assert "📊 Planes de Cuenta:" in text
        assert '"name": "25K"' in text
        assert "P: ¿Precio?\nR: 159 USD" in text
        assert text.endswith("Responde basándote SOLO en la información proporcionada sobre precios y costos de cuentas.")

    def test_no_firm(self):
        profile = IntentClassifier().get_profile(IntentType.GENERAL)

        text = build_context_text({}, profile)

        assert "Información de las firmas sobre información general" in text


class TestTokenEstimate:

    @pytest.mark.parametrize("value,tokens", [
        ("", 0),
        ("abcd", 1),
        ("abcde", 2),
        (0, 0),
        (400, 100),
    ])
    def test_estimate_tokens(self, value, tokens):
        assert estimate_tokens(value) == tokens
