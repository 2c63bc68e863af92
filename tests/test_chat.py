"""
A 'mock and drive' test for chat.py.

- Imitates key variables
- Saves and loads the config file
- Drives CLI commands against a real controller
- Starts the application and exits
"""

from unittest.mock import MagicMock, patch

import pytest

from localchat import chat
from localchat.cli_controller import CLIController
from localchat.config import Config
from localchat.models import Role
from localchat.ui import GlobalPanels, UIConstructor


@pytest.fixture(autouse=True)
def offline_tokenizer():
    """Keeps the status panel from fetching tiktoken encodings"""
    encoder = MagicMock()
    encoder.encode.side_effect = lambda text: text.split()
    with patch("localchat.ui.tiktoken") as mock_tiktoken:
        mock_tiktoken.get_encoding.return_value = encoder
        yield mock_tiktoken


# 1. Configuration Tests


def test_config_defaults(tmp_path):
    """
    Verify Config initializes with correct defaults.
    Config file location is patched to a temp dir so we don't overwrite real settings.
    """
    fake_config_file = tmp_path / "settings.json"

    with patch("localchat.config.CONFIG_FILE", str(fake_config_file)):
        cfg = Config()

        assert cfg.endpoint == "http://localhost:11434"
        assert cfg.model == "deepseek-r1"
        assert cfg.refresh_rate == 30
        assert cfg.chat_url == "http://localhost:11434/api/chat"


def test_config_save_load(tmp_path):
    """Verify the CLI saves and loads settings from disk."""
    fake_config_file = tmp_path / "settings.json"

    with patch("localchat.config.CONFIG_FILE", str(fake_config_file)):
        # 1. Create and Save
        cfg = Config()
        cfg.model = "llama3:8b"
        cfg.save()

        # 2. Load into new object
        cfg_loaded = Config()
        cfg_loaded.load()

        assert cfg_loaded.model == "llama3:8b"


def test_config_load_creates_missing_file(tmp_path):
    fake_config_file = tmp_path / "settings.json"

    with patch("localchat.config.CONFIG_FILE", str(fake_config_file)):
        Config().load()

    assert fake_config_file.exists()


def test_config_load_clamps_refresh_rate(tmp_path):
    fake_config_file = tmp_path / "settings.json"
    fake_config_file.write_text('{"refresh_rate": 0}', encoding="utf-8")

    with patch("localchat.config.CONFIG_FILE", str(fake_config_file)):
        cfg = Config()
        cfg.load()

    assert cfg.refresh_rate == 4


# 2. CLI Commands


def make_cli(controller, client=None):
    cfg = Config()
    ui = UIConstructor(cfg)
    return CLIController(cfg, controller, client, GlobalPanels(cfg, ui), ui)


def saved_session(controller, fake_client):
    fake_client.replies = {"Hello": ["Hi"]}
    session = controller.new_session()
    turn = controller.submit(session.id, "Hello")
    assert controller.wait_for_turn(turn, timeout=5)
    return session


@patch("localchat.cli_controller.prompt")
def test_delete_asks_for_confirmation(mock_prompt, controller, fake_client):
    session = saved_session(controller, fake_client)
    cli = make_cli(controller)

    # Pick chat 1, then decline
    mock_prompt.side_effect = ["1", "n"]
    cli.handle_input("!delete")
    assert session.id in controller.registry

    # Pick it by id prefix, then confirm
    mock_prompt.side_effect = [session.id[:8], "y"]
    cli.handle_input("!delete")
    assert session.id not in controller.registry


@patch("localchat.cli_controller.prompt")
def test_delete_unsaved_chat_is_reported(mock_prompt, controller):
    session = controller.new_session()
    cli = make_cli(controller)

    mock_prompt.side_effect = ["1", "y"]
    cli.handle_input("!delete")

    assert session.id in controller.registry


@patch("localchat.cli_controller.prompt")
def test_load_selects_a_chat(mock_prompt, controller, fake_client):
    first = saved_session(controller, fake_client)
    controller.new_session()
    cli = make_cli(controller)

    mock_prompt.return_value = "1"
    cli.handle_input("!load")

    assert controller.active is first


@patch("localchat.cli_controller.pyperclip")
def test_copy_last_snippet(mock_clip, controller, fake_client):
    fake_client.replies = {"code?": ["Here:\n```python\nprint('hi')\n```\n"]}
    session = controller.new_session()
    turn = controller.submit(session.id, "code?")
    assert controller.wait_for_turn(turn, timeout=5)
    cli = make_cli(controller)

    cli.handle_input("!cp")

    mock_clip.copy.assert_called_once_with("print('hi')")


def test_plain_text_is_not_a_command(controller):
    cli = make_cli(controller)
    assert cli.handle_input("hello there") is False


# 3. Sending a turn through the Chat loop


def test_send_streams_into_the_active_chat(controller, fake_client):
    fake_client.replies = {"Hello": ["Hi", " there"]}
    cli = make_cli(controller)
    app = chat.Chat(cli.config, controller, cli, cli.panel, cli.ui)

    app.send("Hello")

    session = controller.active
    assert [(m.role, m.content) for m in session.messages] == [
        (Role.USER, "Hello"),
        (Role.ASSISTANT, "Hi there"),
    ]
    assert session.persisted


# 4. Main Application Loop (The "End-to-End" Test)


@patch("localchat.chat.root_prompt")  # Mock the user input
def test_application_startup_and_quit(mock_prompt, tmp_path):
    """
    1. Starts chat.py against temp config and chat directories.
    2. Mocks the user typing '!q' immediately.
    3. Verifies the app shuts down cleanly.
    """
    mock_prompt.return_value = "!q"

    with (
        patch("localchat.config.CONFIG_FILE", str(tmp_path / "settings.json")),
        patch("localchat.chat.SESSIONS_DIR", str(tmp_path / "chats")),
    ):
        with pytest.raises(SystemExit) as exit_info:
            chat.main()

    assert exit_info.value.code == 0
    mock_prompt.assert_called()
