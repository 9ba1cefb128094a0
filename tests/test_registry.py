import pytest

from kai.registry import CommandRegistry, ReactionTable


async def _noop(event, args):
    return None


def test_lookup_is_case_insensitive():
    registry = CommandRegistry()
    registry.register("Menu", _noop, "Show this menu")
    assert registry.lookup("MENU") is registry.lookup("menu")
    assert registry.lookup("menu").name == "menu"
    assert "MeNu" in registry
    assert registry.lookup("nothing") is None
    assert registry.lookup("") is None


def test_last_registration_wins():
    registry = CommandRegistry()
    registry.register("ping", _noop, "first")
    registry.register("PING", _noop, "second", owner_only=True)
    assert len(registry) == 1
    assert registry.lookup("ping").description == "second"
    assert registry.lookup("ping").owner_only


def test_empty_name_rejected():
    with pytest.raises(ValueError):
        CommandRegistry().register("  ", _noop)


def test_default_catalog_has_glyphs_and_categories():
    table = ReactionTable.load()
    assert table.glyph_for("PING") == "🏓"
    assert table.glyph_for("unknown") is None
    titles = [title for title, _ in table.categories]
    assert "⚙️ Settings" in titles


def test_override_replaces_glyphs_and_layout(tmp_path):
    override = tmp_path / "reactions.yaml"
    override.write_text(
        "reactions:\n  ping: '✅'\ncategories:\n  Only:\n    - ping\n",
        encoding="utf-8",
    )
    table = ReactionTable.load(override_path=override)
    assert table.glyph_for("ping") == "✅"
    assert table.glyph_for("menu") == "📋"
    assert table.categories == [("Only", ["ping"])]


def test_broken_override_is_ignored(tmp_path):
    override = tmp_path / "reactions.yaml"
    override.write_text("reactions: [unclosed", encoding="utf-8")
    table = ReactionTable.load(override_path=override)
    assert table.glyph_for("ping") == "🏓"
