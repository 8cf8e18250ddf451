import pytest

from styles import StyleSelection, classify_style, resolve_style_instruction, style_menu_text


class TestClassifyStyle:
    """Priority: numeric index, exact keyword, keyword with exclusions."""

    @pytest.mark.parametrize("text,expected", [
        ("1", StyleSelection.ANIME),
        ("2", StyleSelection.CHIBI_CARTOON),
        ("3", StyleSelection.STUDIO_GHIBLI),
        ("4", StyleSelection.WESTERN_CARTOON),
        ("5", StyleSelection.CHINESE_ANIME),
        ("6", StyleSelection.DISNEY),
        (" 3 ", StyleSelection.STUDIO_GHIBLI),
        ("3.", StyleSelection.STUDIO_GHIBLI),
        ("3)", StyleSelection.STUDIO_GHIBLI),
        ("#3", StyleSelection.STUDIO_GHIBLI),
        ("3️⃣", StyleSelection.STUDIO_GHIBLI),
    ])
    def test_numeric_index(self, text, expected):
        assert classify_style(text) is expected

    @pytest.mark.parametrize("text,expected", [
        ("anime", StyleSelection.ANIME),
        ("ghibli", StyleSelection.STUDIO_GHIBLI),
        ("Studio Ghibli", StyleSelection.STUDIO_GHIBLI),
        ("chinese anime", StyleSelection.CHINESE_ANIME),
        ("Chibi  Cartoon", StyleSelection.CHIBI_CARTOON),
        ("disney", StyleSelection.DISNEY),
        ("western cartoon", StyleSelection.WESTERN_CARTOON),
    ])
    def test_exact_keyword(self, text, expected):
        assert classify_style(text) is expected

    @pytest.mark.parametrize("text,expected", [
        ("make it anime please", StyleSelection.ANIME),
        ("I'd love a ghibli-style version", StyleSelection.STUDIO_GHIBLI),
        ("something like chinese anime art", StyleSelection.CHINESE_ANIME),
        ("old school western look", StyleSelection.WESTERN_CARTOON),
        ("a pixar vibe", StyleSelection.DISNEY),
    ])
    def test_partial_keyword(self, text, expected):
        assert classify_style(text) is expected

    def test_exclusion_blocks_anime(self):
        assert classify_style("anime cartoon") is None

    @pytest.mark.parametrize("text", ["", "   ", "7", "0", "watercolor painting", "12"])
    def test_no_match(self, text):
        assert classify_style(text) is None


class TestResolveStyleInstruction:

    def test_known_style_uses_canonical_instruction(self):
        style, instruction = resolve_style_instruction("3")
        assert style is StyleSelection.STUDIO_GHIBLI
        assert instruction == StyleSelection.STUDIO_GHIBLI.instruction

    def test_unmatched_text_is_free_form_instruction(self):
        assert resolve_style_instruction("anime cartoon") == (None, "anime cartoon")

    def test_free_form_is_trimmed(self):
        assert resolve_style_instruction("  oil painting  ") == (None, "oil painting")


class TestStyleMenu:

    def test_menu_lists_every_style_in_order(self):
        menu = style_menu_text()
        positions = [menu.index(f"{s.index}. {s.label}") for s in StyleSelection]
        assert positions == sorted(positions)

    def test_indexes_are_one_to_six(self):
        assert [s.index for s in StyleSelection] == [1, 2, 3, 4, 5, 6]
        assert StyleSelection.from_index(9) is None
