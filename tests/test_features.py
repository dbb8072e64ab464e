from reelrank import features
from reelrank.models import FeatureType


def test_stable_feature_id_matches_string_hash():
    # 31-multiplier polynomial hash: ((97 * 31) + 98) * 31 + 99
    assert features.stable_feature_id("abc") == 96354
    assert features.stable_feature_id("HORROR_SLASHER") == features.stable_feature_id("HORROR_SLASHER")
    assert features.stable_feature_id("HORROR_SLASHER") >= 0


def test_decades_and_combo_keys():
    assert features.decade_label(1999) == "1990s"
    assert features.decade_start(2000) == 2000
    assert features.decade_label(None) is None
    assert features.genre_combo_key(["Horror", "Comedy", "Horror"]) == "Comedy+Horror"


def test_match_names_is_case_insensitive_and_ordered():
    preferred = {"drama": 2.0, "Crime": 1.0}
    assert features.match_names(["Crime", "Drama", "DRAMA", "Western"], preferred) == ["Crime", "Drama"]


def test_extract_features_respects_caps(make_item):
    item = make_item(
        1,
        genres=["Drama", "Crime", "Thriller", "Mystery"],
        keywords=["heist", "betrayal"],
        cast=["A", "B", "C", "D"],
        directors=["Dir"],
        year=1995,
    )

    refs = features.extract_features(item, max_genres=3, max_cast=2)
    by_type = {}
    for ref in refs:
        by_type.setdefault(ref.feature_type, []).append(ref.name)

    assert by_type[FeatureType.GENRE] == ["Drama", "Crime", "Thriller"]
    assert by_type[FeatureType.ACTOR] == ["A", "B"]
    assert by_type[FeatureType.DECADE] == ["1990s"]
    assert by_type[FeatureType.DIRECTOR] == ["Dir"]


def test_find_feature(make_item):
    item = make_item(1, cast=["Tilda Swinton"], directors=["Jim Jarmusch"])

    ref = features.find_feature(item, FeatureType.ACTOR, "tilda  swinton")
    assert ref is not None and ref.feature_id == item.cast[0].id
    assert features.find_feature(item, FeatureType.DIRECTOR, "Nobody") is None
