# services.py
from __future__ import annotations

import json
import os
import re
import shutil
import subprocess
import tarfile
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from .errors import ServiceError
from .process import terminate_process

RELEASE_URL = (
    "https://github.com/matter-labs/era-test-node/releases/download/"
    "{tag}/era_test_node-{tag}-{target}.tar.gz"
)
BINARY_NAME = "era_test_node"


@dataclass(frozen=True)
class TestNodeConfig:
    """Parameters of a local rollup test node (era-test-node)."""
    __test__ = False  # not a pytest test class

    mode: str = "fork"
    network: str = "mainnet"
    log: str = "info"
    log_file_path: str = "era_test_node.log"
    target: str = "x86_64-unknown-linux-gnu"
    release_tag: str = "v0.1.0-alpha.25"
    port: int = 8011
    binary: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "TestNodeConfig":
        fields = cls.__dataclass_fields__
        values = {k: v for k, v in params.items() if k in fields and not k.startswith("_")}
        if "port" in values:
            values["port"] = int(values["port"])
        return cls(**values)

    @property
    def env_name(self) -> str:
        """Variable the endpoint is published under, e.g. TEST_MAINNET_URL."""
        label = re.sub(r"[^A-Za-z0-9]+", "_", self.name or self.network).strip("_").upper()
        return f"TEST_{label}_URL"


class TestNode:
    """
    One era-test-node process bound to a job workspace.

    `start()` returns (endpoint, log file). `stop()` is safe to call any
    number of times; only the first call tears the process down.
    """
    __test__ = False

    def __init__(self, config: TestNodeConfig, *, workspace: Path, tools_dir: Path, stdout_path: Path):
        self.config = config
        self.workspace = Path(workspace)
        self.tools_dir = Path(tools_dir)
        self.stdout_path = Path(stdout_path)
        self._proc: Optional[subprocess.Popen] = None
        self._stopped = False
        self._lock = threading.Lock()

    @property
    def endpoint(self) -> str:
        return f"http://127.0.0.1:{self.config.port}"

    @property
    def log_file(self) -> Path:
        return self.workspace / self.config.log_file_path

    # ---- binary acquisition ----

    def resolve_binary(self) -> str:
        if self.config.binary:
            candidate = self.workspace / self.config.binary
            if candidate.exists():
                return str(candidate)
            found = shutil.which(self.config.binary)
            if found:
                return found
            raise ServiceError(f"test node binary not found: {self.config.binary}")

        cached = self.tools_dir / f"{BINARY_NAME}-{self.config.release_tag}-{self.config.target}" / BINARY_NAME
        if not cached.exists():
            self.download(cached)
        return str(cached)

    def download(self, dest: Path) -> None:
        url = RELEASE_URL.format(tag=self.config.release_tag, target=self.config.target)
        dest.parent.mkdir(parents=True, exist_ok=True)
        archive = dest.parent / "download.tar.gz"
        try:
            with urllib.request.urlopen(url, timeout=60) as response, archive.open("wb") as out:
                shutil.copyfileobj(response, out)
            with tarfile.open(str(archive), mode="r:gz") as tar:
                tar.extractall(path=str(dest.parent), filter="data")
        except (urllib.error.URLError, OSError, tarfile.TarError) as e:
            raise ServiceError(f"could not download {url}: {e}") from e
        finally:
            archive.unlink(missing_ok=True)
        if not dest.exists():
            raise ServiceError(f"{url} did not contain {BINARY_NAME}")
        dest.chmod(0o755)

    # ---- lifecycle ----

    def command(self, binary: str) -> list[str]:
        return [
            binary,
            "--port", str(self.config.port),
            "--log", self.config.log,
            "--log-file-path", str(self.log_file),
            self.config.mode,
            self.config.network,
        ]

    def start(self, env: Optional[Mapping[str, str]] = None) -> Tuple[str, Path]:
        binary = self.resolve_binary()
        cmd = self.command(binary)
        with self._lock:
            if self._proc is not None:
                raise ServiceError("test node already started")
            with self.stdout_path.open("a", encoding="utf-8") as out:
                out.write(f"\n$ {' '.join(cmd)}\n")
                out.flush()
                try:
                    self._proc = subprocess.Popen(
                        cmd,
                        cwd=str(self.workspace),
                        env=dict(env) if env is not None else os.environ.copy(),
                        stdout=out,
                        stderr=subprocess.STDOUT,
                        stdin=subprocess.DEVNULL,
                        start_new_session=True,
                    )
                except OSError as e:
                    raise ServiceError(f"could not start {binary}: {e}") from e
        return self.endpoint, self.log_file

    def is_ready(self) -> bool:
        """
        True once the endpoint answers a JSON-RPC request.

        Any HTTP response counts; only connection failures mean "not yet".
        Raises ServiceError if the process has already exited.
        """
        if self._proc is None:
            raise ServiceError("test node not started")
        code = self._proc.poll()
        if code is not None:
            raise ServiceError(f"test node exited before becoming ready (exit={code})")

        body = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []}).encode("utf-8")
        req = urllib.request.Request(
            self.endpoint,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=1) as response:
                response.read()
            return True
        except urllib.error.HTTPError:
            return True
        except (urllib.error.URLError, OSError):
            return False

    def stop(self, grace: float = 10.0) -> bool:
        """Tear the node down. Returns True only for the call that actually stopped it."""
        with self._lock:
            if self._stopped:
                return False
            self._stopped = True
            proc = self._proc
        if proc is not None:
            terminate_process(proc, grace)
        return True
