from app.services.crawler.strategies import (
    ControlSnapshot,
    choose_newest_option,
    choose_review_search_input,
    choose_reviews_control,
    choose_sort_control,
    is_consent_page,
    place_panel_ready,
    results_feed_ready,
    reviews_control_candidates,
)


def control(idx, tag="button", **kwargs):
    return ControlSnapshot(idx=idx, tag=tag, **kwargs)


def test_from_raw_tolerates_missing_fields():
    snapshot = ControlSnapshot.from_raw({"idx": "3", "tag": "button", "text": None})
    assert snapshot.idx == 3
    assert snapshot.text == ""
    assert snapshot.tab_position == -1


def test_exact_label_wins_over_later_strategies():
    controls = [
        control(0, text="Genel bakış", role="tab", in_tablist=True, tab_position=0),
        control(1, text="Menü", role="tab", in_tablist=True, tab_position=1),
        control(2, text="Yorumlar", role="tab", in_tablist=True, tab_position=2),
    ]
    assert choose_reviews_control(controls) == ("exact-label", controls[2])


def test_review_count_button_is_found_when_no_exact_label():
    controls = [control(0, text="Yol tarifi"), control(1, text="1.234 yorum")]
    name, chosen = choose_reviews_control(controls)
    assert name == "review-count"
    assert chosen.idx == 1


def test_aria_label_counts_for_exact_match():
    controls = [control(5, aria_label="Reviews")]
    assert choose_reviews_control(controls)[1].idx == 5


def test_tablist_scan_falls_back_to_third_tab():
    controls = [
        control(0, text="Overview", in_tablist=True, tab_position=0),
        control(1, text="Menu", in_tablist=True, tab_position=1),
        control(2, text="About", in_tablist=True, tab_position=2),
    ]
    assert choose_reviews_control(controls) == ("tablist-scan", controls[2])


def test_rating_proximity_is_the_last_resort():
    controls = [control(9, text="4,5 (320)", near_rating=True)]
    assert choose_reviews_control(controls) == ("rating-proximity", controls[0])


def test_nothing_matches_on_a_bare_page():
    assert choose_reviews_control([control(0, text="Kaydet"), control(1, tag="input")]) is None


def test_candidates_are_unique_and_in_cascade_order():
    tab = control(2, text="Yorumlar", role="tab", in_tablist=True, tab_position=2)
    near = control(7, text="4,6 (1.234)", near_rating=True)
    controls = [
        control(0, text="Overview", in_tablist=True, tab_position=0),
        control(1, text="Menu", in_tablist=True, tab_position=1),
        tab,
        near,
    ]

    candidates = list(reviews_control_candidates(controls))

    assert [c.idx for _, c in candidates] == [2, 7]
    assert candidates[0][0] == "exact-label"


def test_inputs_are_never_review_tabs():
    controls = [control(0, tag="input", aria_label="Yorumlar")]
    assert choose_reviews_control(controls) is None


def test_review_search_input_by_label_or_placeholder():
    by_label = [control(0), control(1, tag="input", aria_label="Yorumlarda ara")]
    assert choose_review_search_input(by_label).idx == 1

    by_placeholder = [control(3, tag="input", placeholder="Yorumlarda ara")]
    assert choose_review_search_input(by_placeholder).idx == 3

    assert choose_review_search_input([control(4, tag="input", placeholder="Google Haritalar'da ara")]) is None


def test_sort_control_and_newest_option():
    controls = [
        control(0, text="Yorumlar", role="tab"),
        control(1, text="En alakalı"),
        control(2, tag="div", role="menuitemradio", text="En alakalı"),
        control(3, tag="div", role="menuitemradio", text="En yeni"),
    ]
    assert choose_sort_control(controls).idx == 1
    assert choose_newest_option(controls).idx == 3


def test_sort_control_by_aria_label():
    assert choose_sort_control([control(4, aria_label="Yorumları sırala")]).idx == 4


def test_page_state_checks():
    assert is_consent_page("Devam etmeden önce")
    assert is_consent_page("Google", "https://consent.google.com/ml?continue=x")
    assert not is_consent_page("Halil Lahmacun - Google Haritalar", "https://www.google.com/maps")
    assert place_panel_ready({"has_main": True, "has_heading": True})
    assert not place_panel_ready({"has_main": True})
    assert results_feed_ready({"has_feed": True})
    assert not results_feed_ready({})
