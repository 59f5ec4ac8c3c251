"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import json
import os
import stat
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"

HELLO_SCRIPT = "#!/bin/sh\nprintf hello\n"
ENV_SCRIPT = "#!/bin/sh\nprintf '%s|%s|%s' \"$REQUEST_METHOD\" \"$QUERY_STRING\" \"$(cat)\"\n"
FAILING_SCRIPT = "#!/bin/sh\necho 'boom' >&2\nexit 3\n"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    homedir: Path
    logs: Path
    process: subprocess.Popen[str]


def write_executable(path: Path, content: str) -> Path:
    """Write a script and mark it executable for its owner."""

    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


def build_site(root: Path) -> Path:
    """Populate a document root used by the integration tests."""

    homedir = root / "public"
    homedir.mkdir()
    (homedir / "a.html").write_text("<h1>A</h1>")
    sub = homedir / "sub"
    sub.mkdir()
    (sub / "b.txt").write_text("bee")
    (sub / "a.txt").write_text("ay")
    (sub / "nested").mkdir()
    indexed = homedir / "indexed"
    indexed.mkdir()
    (indexed / "index.htm").write_text("htm index")
    (indexed / "index.html").write_text("html index")
    (homedir / "hello.cgi").write_text("ignored")
    return homedir


def _launch_server(
    host: str,
    port: int,
    workdir: Path,
    config: dict,
) -> Generator[ServerProcessInfo, None, None]:
    config_path = workdir / "config.json"
    config_path.write_text(json.dumps(config))
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "-config",
        str(config_path),
        "-port",
        str(port),
        "--host",
        host,
        "--log-destination",
        str(workdir / "server.log"),
    ]
    env = dict(os.environ, PYTHONPATH=str(PROJECT_ROOT))

    with subprocess.Popen(
        args,
        cwd=workdir,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "homedir": Path(config["homedir"]),
            "logs": workdir,
            "process": process,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server against a generated site in a background process."""

    workdir = tmp_path_factory.mktemp("webroot")
    homedir = build_site(workdir)
    scripts = workdir / "bin"
    scripts.mkdir()
    write_executable(scripts / "hello.sh", HELLO_SCRIPT)
    write_executable(scripts / "env.sh", ENV_SCRIPT)
    write_executable(scripts / "fail.sh", FAILING_SCRIPT)
    (scripts / "not-executable.sh").write_text(HELLO_SCRIPT)

    config = {
        "homedir": str(homedir),
        "handlers": {
            ".cgi": {"command": str(scripts / "hello.sh"), "args": ["{filepath}"]},
            ".env": {"command": "bin/env.sh", "args": []},
            ".fail": {"command": str(scripts / "fail.sh"), "args": []},
            ".nox": {"command": str(scripts / "not-executable.sh"), "args": []},
        },
        "access_log": str(workdir / "access.log"),
        "error_log": str(workdir / "error.log"),
        "handler_log": str(workdir / "handler.log"),
    }
    (homedir / "vars.env").write_text("ignored")
    (homedir / "broken.fail").write_text("ignored")
    (homedir / "locked.nox").write_text("ignored")

    host = "127.0.0.1"
    yield from _launch_server(host, reserve_port(host), workdir, config)


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
