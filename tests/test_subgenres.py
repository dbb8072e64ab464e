from reelrank import subgenres
from reelrank.subgenres import PatternFilm


SUPERHERO_KEYWORD_ID = 9715


def _superhero_films(n, rating=2.0):
    return [
        PatternFilm(
            title=f"Cape {i}",
            genres=["Action"],
            keywords=["superhero"],
            keyword_ids=[SUPERHERO_KEYWORD_ID],
            rating=rating,
        )
        for i in range(n)
    ]


def test_detect_subgenres_prefers_keyword_ids():
    found = subgenres.detect_subgenres("Action", "Whatever", ["superhero"], [SUPERHERO_KEYWORD_ID])
    assert found == {"ACTION_SUPERHERO"}

    # Ids present but none in the taxonomy: text cues are not consulted
    assert subgenres.detect_subgenres("Action", "Superhero", ["superhero"], [1]) == set()


def test_detect_subgenres_text_fallback_stays_within_family():
    found = subgenres.detect_subgenres("Horror", "Night Shift", ["slasher", "masked killer"])
    assert "HORROR_SLASHER" in found
    assert all(key.startswith("HORROR_") for key in found)
    assert subgenres.detect_subgenres("Comedy", "Night Shift", ["slasher"]) == set()


def test_avoidance_requires_enough_watched_films():
    patterns = subgenres.analyze_subgenre_patterns(_superhero_films(9))
    assert patterns["Action"].avoided_subgenres == set()

    patterns = subgenres.analyze_subgenre_patterns(_superhero_films(10))
    assert patterns["Action"].avoided_subgenres == {"ACTION_SUPERHERO"}


def test_every_avoided_subgenre_has_ten_watched():
    films = _superhero_films(12) + [
        PatternFilm(title="One Slasher", genres=["Horror"], keywords=["slasher"], rating=1.0),
    ]
    patterns = subgenres.analyze_subgenre_patterns(films)

    for pattern in patterns.values():
        for key in pattern.avoided_subgenres:
            assert pattern.subgenre_stats[key].watched >= 10


def test_should_filter_by_subgenre_reports_reason():
    patterns = subgenres.analyze_subgenre_patterns(_superhero_films(10))

    reason = subgenres.should_filter_by_subgenre(
        ["Action", "Adventure"], ["superhero"], [SUPERHERO_KEYWORD_ID], "Cape 99", patterns
    )
    assert reason == "User avoids action superhero within Action"
    assert subgenres.should_filter_by_subgenre(["Action"], ["heist"], [1], "Job", patterns) is None


def test_cross_genre_boost_needs_three_films_and_keyword_overlap():
    films = [
        PatternFilm(title=f"Scary Funny {i}", genres=["Horror", "Comedy"], keywords=["splatter"], rating=4.5, liked=True)
        for i in range(3)
    ]
    patterns = subgenres.analyze_cross_genre_patterns(films)
    assert patterns["Comedy+Horror"].watched == 3

    boost, reason = subgenres.boost_for_cross_genre_match(["Comedy", "Horror"], ["Splatter"], patterns)
    # weight 2.0 per film, one matched keyword
    assert boost == 2.0 * (1 + 0.2)
    assert "Comedy+Horror" in reason

    assert subgenres.boost_for_cross_genre_match(["Comedy", "Horror"], ["romance"], patterns) == (0.0, None)
    small = subgenres.analyze_cross_genre_patterns(films[:2])
    assert subgenres.boost_for_cross_genre_match(["Comedy", "Horror"], ["splatter"], small)[0] == 0.0


def test_subgenre_report_lists_avoided():
    patterns = subgenres.analyze_subgenre_patterns(_superhero_films(10))
    report = subgenres.generate_subgenre_report(patterns)
    assert "Action:" in report
    assert "Avoids: action superhero" in report
