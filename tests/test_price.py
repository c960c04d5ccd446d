"""price モジュールのユニットテスト."""

import pytest

from drawscout.adapters import load_rules
from drawscout.dom import make_soup
from drawscout.models import AdapterRules
from drawscout.price import choose_price, money_candidates, resolve_price, structured_price


def _resolve(html: str, rules: AdapterRules | None = None):
    rules = rules or load_rules("generic", None)
    return resolve_price(make_soup(html), rules, html)


class TestChoosePrice:
    """choose_price（候補の絞り込みと優先順位）のテスト."""

    def test_prefers_small_fractional(self):
        """閾値未満の端数付き価格を選ぶこと."""
        assert choose_price([0.99, 2.50, 150], AdapterRules()) == 0.99

    def test_fractional_in_preferred_window(self):
        assert choose_price([2.5, 5.0, 3.99], AdapterRules()) == 2.5

    def test_fractional_outside_preferred_window(self):
        """推奨ウィンドウ外でも端数付きを整数より優先すること."""
        assert choose_price([60.5, 80.25, 75], AdapterRules()) == 60.5

    def test_whole_number_in_preferred_window(self):
        assert choose_price([5, 10, 250], AdapterRules()) == 5

    def test_smallest_of_any_kind(self):
        assert choose_price([90, 75], AdapterRules()) == 75

    def test_nothing_in_window(self):
        """ウィンドウ外の候補しか無ければ None を返すこと."""
        assert choose_price([150, 0.001, 40000], AdapterRules()) is None

    def test_empty(self):
        assert choose_price([], AdapterRules()) is None

    def test_rule_window(self):
        """ルールで価格ウィンドウを変更できること."""
        rules = AdapterRules.from_dict({"price_window": {"min": 1, "max": 5}})
        assert choose_price([0.5, 2.0, 4.5], rules) == 4.5


class TestStructuredPrice:
    """structured_price のテスト."""

    def test_json_ld_product(self):
        html = """
        <script type="application/ld+json">
        {"@type": "Product", "offers": {"@type": "Offer", "price": "3.00"}}
        </script>
        """
        assert structured_price(make_soup(html)) == 3.0

    def test_json_ld_graph(self):
        html = """
        <script type="application/ld+json">
        {"@graph": [{"@type": "WebPage"},
                    {"@type": ["Product"], "offers": [{"lowPrice": 0.25}]}]}
        </script>
        """
        assert structured_price(make_soup(html)) == 0.25

    def test_meta_itemprop(self):
        html = '<meta itemprop="price" content="1.99">'
        assert structured_price(make_soup(html)) == 1.99

    def test_broken_json_ld(self):
        """壊れた JSON-LD は無視すること."""
        html = '<script type="application/ld+json">{not json</script>'
        assert structured_price(make_soup(html)) is None


class TestResolvePrice:
    """resolve_price のテスト."""

    def test_structured_price_is_trusted(self):
        """構造化データの価格はヒューリスティックより優先されること."""
        html = """
        <script type="application/ld+json">
        {"@type": "Product", "offers": {"price": "3.00"}}
        </script>
        <span class="price">£0.99</span>
        """
        assert _resolve(html) == 3.0

    def test_anchor_window(self):
        """アンカー文字列の直後から価格を拾うこと."""
        rules = load_rules("generic", {"price_anchors": ["Entry fee"]})
        html = "<p>Win £500 today</p><p>Entry fee: <b>&pound;</b>1.20</p>"
        assert _resolve(html, rules) == 1.2

    def test_rule_selector(self):
        rules = load_rules("generic", {"price_selectors": [".cost"]})
        html = '<div class="cost">0.89</div><div>£5.00</div>'
        assert _resolve(html, rules) == 0.89

    def test_common_price_container(self):
        html = '<h1>Watch</h1><span class="price">£2.50</span><p>Worth £8,000</p>'
        assert _resolve(html) == 2.5

    def test_data_attribute(self):
        html = '<button data-price="0.75">Enter</button>'
        assert _resolve(html) == 0.75

    def test_pence_in_text(self):
        html = "<p>Tickets just 49p each</p>"
        assert _resolve(html) == pytest.approx(0.49)

    def test_bare_number_last_resort(self):
        html = "<p>Entry 2.99 per ticket</p>"
        assert _resolve(html) == 2.99

    def test_no_price(self):
        assert _resolve("<p>Nothing to see here</p>") is None


class TestMoneyCandidates:
    """money_candidates のテスト."""

    def test_currency_and_pence(self):
        found = money_candidates("£1.50 or 99p, cash £1,000", AdapterRules())
        assert found == pytest.approx([1.5, 1000.0, 0.99])

    def test_rule_patterns(self):
        """ルールの price_patterns で通貨パターンを置き換えられること."""
        rules = AdapterRules.from_dict({"price_patterns": [r"EUR\s*([\d.]+)"]})
        assert money_candidates("EUR 2.00 / £3.00", rules) == [2.0]
