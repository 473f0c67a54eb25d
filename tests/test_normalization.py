import pytest

from solvers.normalization import NUMBER_MAP, normalize, tokenize


class TestNormalize:

    def test_pure_digits_unchanged(self):
        assert normalize("85") == "85"
        assert normalize(normalize("85")) == "85"

    def test_english_digit_words_concatenate(self):
        assert normalize("eight five") == "85"

    def test_punctuation_and_case(self):
        assert normalize("Eight, Five.") == "85"

    @pytest.mark.parametrize("text,expected", [
        ("acht fünf", "85"),
        ("huit cinq", "85"),
        ("ocho cinco", "85"),
        ("zwei null eins", "201"),
    ])
    def test_locales(self, text, expected):
        assert normalize(text) == expected

    def test_mixed_locales_resolve_per_token(self):
        assert normalize("acht five") == "85"

    def test_ten_words(self):
        for word in ("ten", "dix", "zehn", "diez"):
            assert NUMBER_MAP[word] == "10"
        assert normalize("one ten") == "110"

    def test_free_text_joined_with_spaces(self):
        assert normalize("Hello   World!") == "hello world"

    def test_mixed_words_and_digits_are_not_concatenated(self):
        assert normalize("code eight five") == "code 8 5"

    def test_spaced_digits_concatenate(self):
        assert normalize("1 2 3") == "123"

    @pytest.mark.parametrize("value", [None, "", 42, ["eight"]])
    def test_invalid_input(self, value):
        assert normalize(value) == ""

    def test_tokenize_drops_empty_tokens(self):
        assert tokenize("eight , five") == ["8", "5"]
