"""
Alias resolution tests

Tests alias expansion during parse, alias config layering and loading
alias tables from YAML.
"""

import pytest

from chatdoc.config import AppSettings
from chatdoc.lib.aliases import AliasResolver, aliases_build, aliases_load
from chatdoc.lib.errors import ParseError
from chatdoc.lib.parser import Parser
from chatdoc.models import AliasDescriptor, Message, Role


@pytest.fixture
def settings():
    return AppSettings(auto_title=False, default_system_prompt="Default prompt")


@pytest.fixture
def aliases():
    return {
        "name": AliasDescriptor(
            system="S",
            user_prefix="P: ",
            config={"temperature": 0.1, "model": "alias-model"},
        ),
        "plain": AliasDescriptor(system="Plain system"),
    }


class TestAliasParse:
    """Alias messages become a system/user pair"""

    def test_alias_expansion(self, settings, aliases):
        """'>>> alias:name' + 'X' -> [System('S'), User('P: X')]"""
        result = Parser(">>> alias:name\nX\n", settings=settings, aliases=aliases).parse()

        assert result.payload_make() == [
            {"role": "system", "content": "S"},
            {"role": "user", "content": "P: X"},
        ]

    def test_alias_config_precedence(self, settings, aliases):
        """document config > alias config > global config > defaults"""
        lines = [">>> config", "model: doc-model", "<<< config", ">>> alias:name", "X"]
        result = Parser(
            lines,
            settings=settings,
            aliases=aliases,
            global_config={"temperature": 0.9, "max_tokens": 5},
        ).parse()

        assert result.config["model"] == "doc-model"
        assert result.config["temperature"] == 0.1
        assert result.config["max_tokens"] == 5
        assert result.config["provider"] == settings.provider

    def test_empty_prefix(self, settings, aliases):
        result = Parser(">>> alias:plain\nX\n", settings=settings, aliases=aliases).parse()

        assert result.messages[1].content == "X"

    def test_alias_in_conversation(self, settings, aliases):
        source = ">>> user\nHi\n<<< assistant\nHello\n>>> alias:plain\nMore\n"
        result = Parser(source, settings=settings, aliases=aliases).parse()

        assert [m.role for m in result.messages] == [
            Role.USER, Role.ASSISTANT, Role.SYSTEM, Role.USER,
        ]
        assert result.messages[3].extra == {"alias": "plain"}

    def test_alias_name_whitespace(self, settings, aliases):
        result = Parser(">>> alias: name \nX\n", settings=settings, aliases=aliases).parse()

        assert result.messages[0].content == "S"

    def test_unknown_alias_degrades(self, settings, aliases):
        result = Parser(">>> alias:nope\nX\n", settings=settings, aliases=aliases).parse()

        assert [m.role for m in result.messages] == [Role.SYSTEM, Role.USER]
        assert result.messages[0].content == "Default prompt"
        assert result.messages[1].content == "X"
        assert result.messages[1].extra == {}
        assert len(result.warnings) == 1
        assert "nope" in str(result.warnings[0])


class TestAliasResolver:
    """Direct resolver behavior"""

    def test_later_alias_config_wins(self):
        resolver = AliasResolver({
            "a": AliasDescriptor(system="A", config={"model": "a", "temperature": 0.2}),
            "b": AliasDescriptor(system="B", config={"model": "b"}),
        })
        messages = [
            Message(role=Role.USER, content="1", extra={"alias": "a"}),
            Message(role=Role.USER, content="2", extra={"alias": "b"}),
        ]
        resolved, config, warnings = resolver.resolve(messages)

        assert [m.content for m in resolved] == ["A", "1", "B", "2"]
        assert config == {"model": "b", "temperature": 0.2}
        assert warnings == []

    def test_non_alias_messages_untouched(self):
        message = Message(role=Role.ASSISTANT, content="x")
        resolved, config, warnings = AliasResolver().resolve([message])

        assert resolved == [message]
        assert config == {}


class TestAliasLoading:
    """Alias tables from YAML"""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "aliases.yaml"
        path.write_text(
            "translate:\n"
            "  system: You translate text to French.\n"
            "  user_prefix: 'Translate: '\n"
            "  config:\n"
            "    temperature: 0.1\n"
        )
        table = aliases_load(path)

        assert table["translate"].system == "You translate text to French."
        assert table["translate"].user_prefix == "Translate: "
        assert table["translate"].config == {"temperature": 0.1}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "aliases.yaml"
        path.write_text("")

        assert aliases_load(path) == {}

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "aliases.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ParseError):
            aliases_load(path)

    def test_missing_system(self):
        with pytest.raises(ParseError, match="broken"):
            aliases_build({"broken": {"user_prefix": "x"}})
