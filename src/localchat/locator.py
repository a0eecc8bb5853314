"""Model artifact lookup under the artifact root."""
from __future__ import annotations

import logging
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .errors import LibraryNotFound, ModelNotFound, ParamsNotFound

logger = logging.getLogger(__name__)

QUANTIZATION_PRESETS = ["q3f16_0", "q4f16_0", "q4f32_0", "q0f32", "q0f16"]

CHAT_CONFIG_NAME = "mlc-chat-config"
PARAMS_INDEX_NAME = "ndarray-cache"
JSON_SUFFIX = ".json"


@dataclass(frozen=True)
class ModelDescriptor:
    model: str
    quantization: str
    device_name: str
    device_id: int
    artifact_path: str
    local_id: str = ""

    def candidates(self) -> list[str]:
        if self.local_id:
            return [self.local_id]
        if self.quantization == "auto":
            presets = QUANTIZATION_PRESETS
        else:
            presets = [self.quantization]
        return [f"{self.model}-{preset}" for preset in presets]


@dataclass(frozen=True)
class ResolvedModel:
    library_path: Path
    model_resource_dir: Path
    local_id: str


def find_file(
    search_paths: Iterable[Path | str],
    names: Sequence[str],
    suffixes: Sequence[str],
) -> Path | None:
    """Return the first regular file in ``search_paths x names x suffixes``.

    Directories vary slowest and suffixes fastest. Matches are returned in
    canonical absolute form.
    """
    for prefix in search_paths:
        for name in names:
            for suffix in suffixes:
                path = Path(prefix) / f"{name}{suffix}"
                if not path.exists():
                    continue
                path = path.resolve()
                if path.is_file():
                    return path
    return None


def lib_suffixes(platform_name: str | None = None) -> list[str]:
    platform_name = platform_name or sys.platform
    if platform_name == "win32":
        return [".dll"]
    if platform_name == "darwin":
        return [".dylib", ".so"]
    return [".so"]


def arch_suffix(machine: str | None = None) -> str:
    machine = (machine if machine is not None else platform.machine()).lower()
    if machine in ("x86_64", "amd64"):
        return "_x86_64"
    if machine in ("aarch64", "arm64"):
        return "_arm64"
    return ""


class ModelLocator:
    def __init__(
        self,
        artifact_path: Path | str,
        device_name: str,
        arch: str | None = None,
        suffixes: Sequence[str] | None = None,
    ) -> None:
        self.artifact_path = Path(artifact_path)
        self.device_name = device_name
        self.arch = arch if arch is not None else arch_suffix()
        self.suffixes = list(suffixes) if suffixes is not None else lib_suffixes()

    def config_search_paths(self, local_id: str) -> list[Path]:
        return [
            self.artifact_path / local_id / "params",
            self.artifact_path / "prebuilt" / local_id,
        ]

    def library_search_paths(self, model_dir: Path) -> list[Path]:
        # <id>/params keeps libraries beside it in <id>/ or in <id>/lib;
        # prebuilt bundles carry their own lib/ or share prebuilt/lib.
        if model_dir.name == "params":
            return [model_dir.parent, model_dir.parent / "lib"]
        return [model_dir / "lib", model_dir.parent / "lib"]

    def resolve(self, candidates: Sequence[str]) -> ResolvedModel:
        if not candidates:
            raise ModelNotFound("No local id candidates to search", [self.artifact_path])

        config_path: Path | None = None
        local_id = ""
        for candidate in candidates:
            config_path = find_file(
                self.config_search_paths(candidate), [CHAT_CONFIG_NAME], [JSON_SUFFIX]
            )
            if config_path is not None:
                local_id = candidate
                break

        if config_path is None:
            roots = self.config_search_paths(candidates[0])
            raise ModelNotFound(
                f'Cannot find "{CHAT_CONFIG_NAME}{JSON_SUFFIX}" in path '
                f'"{roots[0]}", "{roots[1]}" or other candidate paths.',
                [root for candidate in candidates for root in self.config_search_paths(candidate)],
            )
        logger.info("Use config %s", config_path)

        model_dir = config_path.parent
        lib_dirs = self.library_search_paths(model_dir)

        lib_name = f"{local_id}-{self.device_name}"
        library_path = find_file(lib_dirs, [lib_name, lib_name + self.arch], self.suffixes)
        if library_path is None:
            raise LibraryNotFound(
                f'Cannot find library "{lib_name}{self.suffixes[-1]}" and other library '
                f"candidate in {', '.join(str(d) for d in lib_dirs)}",
                lib_dirs,
            )
        logger.info("Use lib %s", library_path)

        if find_file([model_dir], [PARAMS_INDEX_NAME], [JSON_SUFFIX]) is None:
            raise ParamsNotFound(
                f"Cannot find {PARAMS_INDEX_NAME}{JSON_SUFFIX} for params in {model_dir}",
                [model_dir],
            )

        return ResolvedModel(
            library_path=library_path,
            model_resource_dir=model_dir,
            local_id=local_id,
        )
