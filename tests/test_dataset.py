import pytest

from fruitguard.dataset import (
    append_feedback,
    load_examples,
    parse_fruit_type,
    parse_toxicity,
    read_feedback_log,
)


def test_missing_log_is_empty(tmp_path):
    df = read_feedback_log(tmp_path / "nope.csv")
    assert df.empty
    assert list(df.columns) == ["uploaded_filename", "fruit_type", "toxicity"]


def test_append_and_read(tmp_path):
    csv = tmp_path / "log" / "feedback_log.csv"
    assert append_feedback(csv, "a.png", "apple", "toxic") == 1
    assert append_feedback(csv, "b.png", "unlabeled", "non-toxic") == 2

    df = read_feedback_log(csv)
    assert df["uploaded_filename"].tolist() == ["a.png", "b.png"]


def test_log_without_required_columns(tmp_path):
    csv = tmp_path / "bad.csv"
    csv.write_text("filename,label\nx.png,apple\n")
    with pytest.raises(ValueError):
        read_feedback_log(csv)


@pytest.mark.parametrize(
    "raw, expected",
    [("toxic", True), ("non-toxic", False), (" Toxic ", True), ("unlabeled", None), (float("nan"), None)],
)
def test_parse_toxicity(raw, expected):
    assert parse_toxicity(raw) is expected


def test_parse_toxicity_rejects_unknown():
    with pytest.raises(ValueError):
        parse_toxicity("poisonous")


def test_parse_fruit_type():
    assert parse_fruit_type("mango") == "mango"
    assert parse_fruit_type("unlabeled") is None
    assert parse_fruit_type(float("nan")) is None


def test_load_examples_keeps_order_and_skips_missing(tmp_path, image_factory):
    csv = tmp_path / "feedback_log.csv"
    (tmp_path / "a.png").write_bytes(image_factory())
    (tmp_path / "c.png").write_bytes(image_factory((0, 0, 255)))
    append_feedback(csv, "a.png", "apple", "toxic")
    append_feedback(csv, "missing.png", "pear", "non-toxic")
    append_feedback(csv, "c.png", "unlabeled", "non-toxic")

    examples = load_examples(read_feedback_log(csv), tmp_path)

    assert [e.example_id for e in examples] == ["a.png", "c.png"]
    assert examples[0].fruit_type == "apple" and examples[0].is_toxic is True
    assert examples[1].fruit_type is None and not examples[1].is_labeled


def test_load_examples_skips_unknown_toxicity_label(tmp_path, image_factory):
    csv = tmp_path / "feedback_log.csv"
    (tmp_path / "a.png").write_bytes(image_factory())
    (tmp_path / "b.png").write_bytes(image_factory((0, 255, 0)))
    append_feedback(csv, "a.png", "apple", "Toxic?")
    append_feedback(csv, "b.png", "pear", "non-toxic")

    examples = load_examples(read_feedback_log(csv), tmp_path)

    assert [e.example_id for e in examples] == ["b.png"]
    assert examples[0].is_toxic is False
