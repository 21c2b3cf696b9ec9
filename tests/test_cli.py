import io

from unittest.mock import patch

import feedai.cli.translate_titles as cli_mod
from feedai.schemas.ai_config import AIConfig


class FakeGateway:
    def __init__(self):
        self.config = AIConfig(api_url="https://api.example.com", api_key="k")
        self.closed = False

    async def call(self, prompt, on_chunk=None, token=None, timeout=None):
        return "1. 苹果新闻\n2. 科技周刊"

    async def close(self):
        self.closed = True


def test_translates_titles_from_arguments(capsys):
    gateway = FakeGateway()
    with patch.object(cli_mod, "LLMGateway", return_value=gateway), patch.object(cli_mod, "configure_logging"):
        exit_code = cli_mod.main(["--no-cache", "--lang", "zh-CN", "Apple News", "Tech Weekly"])

    assert exit_code == 0
    assert capsys.readouterr().out.splitlines()[-2:] == ["苹果新闻", "科技周刊"]
    assert gateway.closed


def test_reads_titles_from_stdin(capsys, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO("Apple News\n\nTech Weekly\n"))
    with patch.object(cli_mod, "LLMGateway", return_value=FakeGateway()), patch.object(cli_mod, "configure_logging"):
        cli_mod.main(["--no-cache"])

    assert capsys.readouterr().out.splitlines()[-2:] == ["苹果新闻", "科技周刊"]


def test_verbose_flag_enables_debug_logging(capsys):
    with patch.object(cli_mod, "LLMGateway", return_value=FakeGateway()), patch.object(
        cli_mod, "configure_logging"
    ) as configure:
        cli_mod.main(["--no-cache", "-v", "Apple News"])

    configure.assert_called_once_with(verbose=True)
