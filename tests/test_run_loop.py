from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from media_watcher import main as main_module
from media_watcher.config import ENV_FIELDS, WatcherConfig
from media_watcher.main import main, run_loop

WEBHOOK_URL = "https://mattermost.example.com/hooks/secret"


class _FakePlatform:
    def __init__(self) -> None:
        self.media_types = [{"mediatypeid": "7", "name": "Email", "status": "1"}]
        self.user_groups = [{"usrgrpid": "5", "name": "Admins", "users": [{"userid": "1"}]}]
        self.webhook_texts: list[str] = []
        self.methods: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if str(request.url) == WEBHOOK_URL:
            self.webhook_texts.append(body["text"])
            return httpx.Response(200, text="ok")

        assert request.url.path == "/api_jsonrpc.php"
        self.methods.append(body["method"])
        if body["method"] == "mediatype.get":
            result = self.media_types
        elif body["method"] == "usergroup.get":
            result = self.user_groups
        else:
            result = {"mediatypeids": [body["params"]["mediatypeid"]]}
        return httpx.Response(200, json={"jsonrpc": "2.0", "result": result, "id": body["id"]})


def _config(state_dir: Path) -> WatcherConfig:
    return WatcherConfig(
        zabbix_api_url="https://zabbix.example.com",
        zabbix_api_token="token",
        check_interval_minutes=1,
        off_duration_minutes=60,
        media_names=["Email"],
        state_dir=str(state_dir),
        mattermost_webhook_url=WEBHOOK_URL,
        syslog_enabled=False,
    )


@pytest.mark.asyncio
async def test_single_cycle_then_restart_picks_up_saved_state(tmp_path: Path) -> None:
    platform = _FakePlatform()
    config = _config(tmp_path)

    rc = await run_loop(config, once=True, transport=httpx.MockTransport(platform.handler))

    assert rc == 0
    assert platform.methods == ["mediatype.get", "usergroup.get"]
    assert len(platform.webhook_texts) == 1
    assert platform.webhook_texts[0].startswith("Disabled media type detected: Email")
    assert set(json.loads((tmp_path / "media_state.json").read_text(encoding="utf-8"))) == {"7"}
    assert json.loads((tmp_path / "usergroup_state.json").read_text(encoding="utf-8")) == {
        "5": {"usrgrpid": "5", "name": "Admins", "users": ["1"]}
    }

    platform.webhook_texts.clear()
    platform.user_groups.append({"usrgrpid": "6", "name": "Ops", "users": []})

    rc = await run_loop(config, once=True, transport=httpx.MockTransport(platform.handler))

    assert rc == 0
    assert platform.webhook_texts == ["User group change: group added: Ops"]


@pytest.mark.asyncio
async def test_cycle_survives_unreachable_platform(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    config = _config(tmp_path)
    rc = await run_loop(config, once=True, transport=httpx.MockTransport(handler))

    assert rc == 0
    assert not (tmp_path / "media_state.json").exists()
    assert not (tmp_path / "usergroup_state.json").exists()


def _clear_watcher_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv first so the variables are removed again once the test ends.
    for name in [*ENV_FIELDS, "MEDIA_WATCHER_CONFIG", "LOG_FORMAT"]:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_main_reads_dotenv_from_working_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_watcher_env(monkeypatch)
    (tmp_path / ".env").write_text(
        "ZABBIX_API_URL=https://zabbix.example.com\n"
        "MEDIA_CHECK_INTERVAL=5\n"
        "MEDIA_OFF_DURATION=60\n"
        "SYSLOG_ENABLED=false\n"
        "LOG_FORMAT=console\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    seen: dict[str, object] = {}
    formats: list[str] = []

    async def fake_run_loop(config: WatcherConfig, once: bool = False) -> int:
        seen["config"] = config
        seen["once"] = once
        return 0

    monkeypatch.setattr(main_module, "run_loop", fake_run_loop)
    monkeypatch.setattr(main_module, "configure_logging", lambda level="INFO", fmt="json": formats.append(fmt))

    assert main(["--once"]) == 0

    config = seen["config"]
    assert isinstance(config, WatcherConfig)
    assert config.zabbix_api_url == "https://zabbix.example.com"
    assert config.check_interval_minutes == 5
    assert config.off_duration_minutes == 60
    assert seen["once"] is True
    assert formats and set(formats) == {"console"}
