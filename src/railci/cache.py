# cache.py
from __future__ import annotations

import hashlib
import io
import json
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Job-level caching of build directories (target/, vendored deps):
#   cache_key = hash(
#       job name + runner label,
#       cached dirs,
#       job.env (RUSTFLAGS changes the build),
#       contents of declared input files (Cargo.lock, Cargo.toml, ...),
#   )
#
# Cache artifact:
#   a tar.gz containing the cached dirs (paths relative to the workspace)
#   plus a manifest.json for explainability.
#
# Layout:
#   root/
#     <job_name>/
#       <key>.tar.gz
#       <key>.manifest.json
# ---------------------------------------------------------------------


DEFAULT_CACHE_EXCLUDES = [
    ".git/**",
    "**/.DS_Store",
]


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(root: Path, patterns: List[str]) -> List[Path]:
    """
    Expand input patterns into concrete paths.
    Supports:
      - file path: "Cargo.lock"
      - dir path:  "crates/"
      - glob:      "**/Cargo.toml"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = root / pat
        if p.exists():
            out.append(p)
            continue
        out.extend(sorted(root.glob(pat)))

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def _hash_inputs(root: Path, inputs: List[str], *, excludes: List[str]) -> Tuple[str, Dict]:
    """Hash the declared input set: relative paths plus file contents."""
    file_fps: List[Tuple[str, str]] = []

    for p in _resolve_globs(root, inputs):
        files = [p] if p.is_file() else list(_iter_files_under(p))
        for f in files:
            rel = _relpath(f, root)
            if _matches_any_glob(rel, excludes):
                continue
            file_fps.append((rel, _hash_file_contents(f)))

    file_fps.sort(key=lambda t: t[0])
    payload = {"files": file_fps}
    return _sha256_str(_json_dumps_stable(payload)), payload


def compute_cache_key(
    job_name: str,
    *,
    workspace: str | Path,
    dirs: List[str],
    inputs: List[str],
    runs_on: str = "",
    env: Optional[Mapping[str, str]] = None,
) -> Tuple[str, Dict]:
    """Returns (cache_key, manifest) where the manifest explains the key."""
    root = Path(workspace).resolve()
    inputs_hash, inputs_manifest = _hash_inputs(root, inputs, excludes=DEFAULT_CACHE_EXCLUDES)

    payload = {
        "v": 1,  # bump this if you change hashing format
        "job": job_name,
        "runs_on": runs_on,
        "dirs": sorted(dirs),
        "env": dict(env or {}),
        "inputs_hash": inputs_hash,
    }
    key = _sha256_str(_json_dumps_stable(payload))
    manifest = {
        "key": key,
        "payload": payload,
        "inputs": inputs_manifest,
        "generated_at_unix": int(time.time()),
    }
    return key, manifest


class CacheStore:
    """File-based cache store, one directory per job."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _job_dir(self, job_name: str) -> Path:
        d = self.root / job_name
        d.mkdir(parents=True, exist_ok=True)
        return d

    def artifact_path(self, job_name: str, key: str) -> Path:
        return self._job_dir(job_name) / f"{key}.tar.gz"

    def manifest_path(self, job_name: str, key: str) -> Path:
        return self._job_dir(job_name) / f"{key}.manifest.json"

    def restore(self, job_name: str, key: str, manifest: Dict, *, workspace: str | Path) -> CacheHit:
        """
        Extract the artifact for `key` into the workspace.

        Restore is "overwrite by extraction"; a missing or unreadable artifact
        is a miss, never an error.
        """
        root = Path(workspace).resolve()
        art = self.artifact_path(job_name, key)
        man = self.manifest_path(job_name, key)

        if not art.exists() or not man.exists():
            return CacheHit(hit=False, key=key, reason="cache miss", manifest=manifest)

        try:
            with tarfile.open(str(art), mode="r:gz") as tar:
                tar.extractall(path=str(root), filter="data")
        except (OSError, tarfile.TarError) as e:
            return CacheHit(hit=False, key=key, reason=f"cache exists but restore failed: {e}", manifest=manifest)

        try:
            stored = json.loads(man.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            stored = {}

        return CacheHit(hit=True, key=key, reason="cache hit: restored artifact", manifest=stored or manifest)

    def save(self, job_name: str, key: str, manifest: Dict, dirs: List[str], *, workspace: str | Path) -> Path:
        """Archive `dirs` (relative to the workspace) under `key`. Returns the artifact path."""
        root = Path(workspace).resolve()
        art = self.artifact_path(job_name, key)
        man = self.manifest_path(job_name, key)

        tmp = art.with_suffix(".tmp")
        try:
            # Build tar.gz in tmp, then atomic rename
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for entry in dirs:
                    src = (root / entry).resolve()
                    if not src.exists():
                        continue
                    files = [src] if src.is_file() else list(_iter_files_under(src))
                    for f in files:
                        rel = _relpath(f, root)
                        if _matches_any_glob(rel, DEFAULT_CACHE_EXCLUDES):
                            continue
                        tar.add(str(f), arcname=rel, recursive=False)

                payload = json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False).encode("utf-8")
                info = tarfile.TarInfo(name=f".railci_cache_manifest/{job_name}/{key}.manifest.json")
                info.size = len(payload)
                info.mtime = int(time.time())
                tar.addfile(info, fileobj=io.BytesIO(payload))

            tmp.replace(art)
            man.write_text(json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8")
        finally:
            tmp.unlink(missing_ok=True)

        return art

    def prune(self, job_name: str, keep: int = 3) -> None:
        """
        Keep only the newest N artifacts for a job.
        Uses file mtime as "newest".
        """
        d = self._job_dir(job_name)
        tars = sorted(d.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        for p in tars[keep:]:
            key = p.name[: -len(".tar.gz")]
            p.unlink(missing_ok=True)
            (d / f"{key}.manifest.json").unlink(missing_ok=True)
