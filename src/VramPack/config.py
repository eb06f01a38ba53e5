"""Define typed configuration models for all pipeline stages.

Use `PipelineConfig` to load, validate, and persist runtime settings. The
configuration is loaded once per run and treated as read-only by the stages.
"""

import os
import logging
import re
import yaml
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger("vram_pack.config")

ENV_CONCURRENCY = "VRAM_TOOLS_CONCURRENCY"
ENV_FORCE = "PACK_FORCE"
DEFAULT_CONCURRENCY = 4

_TRUTHY_OFF = {"", "0", "false", "no", "off"}


@dataclass
class KTX2Config:
    """Encoder parameters passed verbatim to toktx / gltf-transform."""

    etc1s_qlevel: int = 128     # 64-180 is a sensible range for non-critical UI
    etc1s_effort: int = 3       # toktx --clevel
    uastc_rate: int = 2         # toktx --uastc_quality
    uastc_quality: int = 128    # gltf-transform uastc --level (0-255)
    zstd_level: int = 18        # supercompression, UASTC only
    gen_mipmap: bool = True
    # toktx --force-orientation; turn off for toktx builds that reject it.
    force_orientation: bool = True


@dataclass
class Ktx2BuildConfig:
    """Per-root KTX2 build for ``build-ktx2``. Root name -> directory."""

    roots: Dict[str, str] = field(default_factory=lambda: {
        "textures": "public/assets/textures",
        "ui": "public/assets/ui",
    })
    uastc_roots: List[str] = field(default_factory=lambda: ["ui"])


@dataclass
class CompressConfig:
    """Quick single-file Draco compress for ``compress-glb``."""

    level: int = 10             # 0-10, higher is smaller and slower
    suffix: str = ".draco.glb"  # default output name next to the input


@dataclass
class ModelsConfig:
    """Control which models the packer touches and how."""

    skip_packed: bool = True
    normalize_webp_in_models: bool = True
    force: bool = False


@dataclass
class DracoConfig:
    """Draco edgebreaker quantization. ``None`` disables an attribute."""

    position_bits: int = 14
    # Leave as None when UVs exceed [0, 1].
    texcoord_bits: Optional[int] = None


@dataclass
class QuantizeConfig:
    """KHR_mesh_quantization settings for vertex buffers."""

    enabled: bool = True
    position_bits: int = 14
    normal_bits: int = 10
    texcoord_bits: Optional[int] = 12


@dataclass
class TexturesConfig:
    """Mipmap policy. Precedence: yes > no > default."""

    gen_mipmap_default: bool = True
    no_mipmap_include: List[str] = field(default_factory=lambda: [r"/ui/", r"/hud/"])
    yes_mipmap_include: List[str] = field(default_factory=list)


@dataclass
class ImagesConfig:
    """Raster sibling encodings for UI assets."""

    avif_quality: int = 60
    webp_quality: int = 82
    webp_method: int = 5
    ui_uses_uastc: bool = False


@dataclass
class ToolsConfig:
    """External encoder locations and limits."""

    toktx: str = "toktx"
    # Empty = `gltf-transform` on PATH, else `npx -y @gltf-transform/cli`.
    gltf_transform: List[str] = field(default_factory=list)
    timeout_seconds: int = 600


_SUPPORTED_CONFIG_VERSION = 1


@dataclass
class PipelineConfig:
    """Master pipeline configuration."""

    config_version: int = 1
    repo_root: str = "."
    img_dirs: List[str] = field(default_factory=lambda: [
        "public", "assets", "static", "src/assets", "public/assets",
    ])
    model_dirs: List[str] = field(default_factory=lambda: [
        "public", "assets", "static", "public/models", "assets/models",
    ])
    uastc_include: List[str] = field(default_factory=lambda: [
        r"characters?", r"hero", r"props[_-]?near", r"materials?/(metal|skin|glass)",
    ])
    ui_include: List[str] = field(default_factory=lambda: [
        r"hud", r"ui", r"interface",
    ])
    concurrency: int = DEFAULT_CONCURRENCY
    report_dir: str = "build-reports"
    log_level: str = "INFO"
    log_file: str = ""
    bypass_env_vars: List[str] = field(default_factory=lambda: [
        "CI", "VERCEL", "SKIP_ASSET_PIPELINE",
    ])

    ktx2: KTX2Config = field(default_factory=KTX2Config)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    draco: DracoConfig = field(default_factory=DracoConfig)
    quantize: QuantizeConfig = field(default_factory=QuantizeConfig)
    textures: TexturesConfig = field(default_factory=TexturesConfig)
    images: ImagesConfig = field(default_factory=ImagesConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    ktx2_build: Ktx2BuildConfig = field(default_factory=Ktx2BuildConfig)
    compress: CompressConfig = field(default_factory=CompressConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        """Load pipeline configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write pipeline configuration to a YAML file."""
        import dataclasses
        import threading as _th
        data = dataclasses.asdict(self)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{_th.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def apply_env_overrides(self, environ=None):
        """Apply VRAM_TOOLS_CONCURRENCY and PACK_FORCE from the environment."""
        env = os.environ if environ is None else environ
        self.concurrency = parse_concurrency(env.get(ENV_CONCURRENCY), self.concurrency)
        if env.get(ENV_FORCE, "") == "1":
            logger.debug("%s=1: forcing model repack.", ENV_FORCE)
            self.models.force = True

    def resolve_dirs(self, dirs: List[str]) -> List[str]:
        """Resolve configured directories against ``repo_root``."""
        root = os.path.abspath(self.repo_root)
        return [os.path.normpath(os.path.join(root, d)) for d in dirs]

    def report_path(self, name: str) -> str:
        """Return an absolute path inside the report directory."""
        return os.path.join(os.path.abspath(self.repo_root), self.report_dir, name)

    def bypass_reason(self, environ=None) -> Optional[str]:
        """Return the name of the first set bypass variable, if any."""
        env = os.environ if environ is None else environ
        for name in self.bypass_env_vars:
            value = env.get(name)
            if value is not None and value.strip().lower() not in _TRUTHY_OFF:
                return name
        return None

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(self.log_level).upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )

        if self.concurrency < 1:
            errors.append("concurrency must be >= 1")
        if self.concurrency > 128:
            errors.append("concurrency must be <= 128")
        if not self.img_dirs:
            errors.append("img_dirs must not be empty")
        if not self.model_dirs:
            errors.append("model_dirs must not be empty")
        if not self.report_dir:
            errors.append("report_dir must not be empty")

        for list_name in ("uastc_include", "ui_include"):
            errors.extend(_regex_errors(list_name, getattr(self, list_name)))
        errors.extend(_regex_errors(
            "textures.no_mipmap_include", self.textures.no_mipmap_include))
        errors.extend(_regex_errors(
            "textures.yes_mipmap_include", self.textures.yes_mipmap_include))

        # KTX2
        if not (1 <= self.ktx2.etc1s_qlevel <= 255):
            errors.append("ktx2.etc1s_qlevel must be in [1, 255]")
        if not (1 <= self.ktx2.etc1s_effort <= 5):
            errors.append("ktx2.etc1s_effort must be in [1, 5]")
        if not (0 <= self.ktx2.uastc_rate <= 4):
            errors.append("ktx2.uastc_rate must be in [0, 4]")
        if not (0 <= self.ktx2.uastc_quality <= 255):
            errors.append("ktx2.uastc_quality must be in [0, 255]")
        if not (1 <= self.ktx2.zstd_level <= 22):
            errors.append("ktx2.zstd_level must be in [1, 22]")

        # Geometry
        _check_bits(errors, "draco.position_bits", self.draco.position_bits)
        _check_bits(errors, "draco.texcoord_bits", self.draco.texcoord_bits, nullable=True)
        _check_bits(errors, "quantize.position_bits", self.quantize.position_bits)
        _check_bits(errors, "quantize.normal_bits", self.quantize.normal_bits)
        _check_bits(errors, "quantize.texcoord_bits", self.quantize.texcoord_bits,
                    nullable=True)

        # Images
        if not (0 <= self.images.avif_quality <= 100):
            errors.append("images.avif_quality must be in [0, 100]")
        if not (0 <= self.images.webp_quality <= 100):
            errors.append("images.webp_quality must be in [0, 100]")
        if not (0 <= self.images.webp_method <= 6):
            errors.append("images.webp_method must be in [0, 6]")

        # One-off commands
        if not self.ktx2_build.roots:
            errors.append("ktx2_build.roots must not be empty")
        for name in self.ktx2_build.uastc_roots:
            if name not in self.ktx2_build.roots:
                errors.append(f"ktx2_build.uastc_roots: unknown root '{name}'")
        if not (0 <= self.compress.level <= 10):
            errors.append("compress.level must be in [0, 10]")
        if not self.compress.suffix.lower().endswith(".glb"):
            errors.append("compress.suffix must end with .glb")

        # Tools
        if self.tools.timeout_seconds < 1:
            errors.append("tools.timeout_seconds must be >= 1")
        if not self.tools.toktx:
            errors.append("tools.toktx must not be empty")

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def parse_concurrency(raw, default: int = DEFAULT_CONCURRENCY) -> int:
    """Parse a concurrency override; non-numeric or <= 0 keeps ``default``."""
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        logger.warning(
            "Ignoring non-numeric %s=%r, using %d.", ENV_CONCURRENCY, raw, default
        )
        return default
    if value <= 0:
        logger.warning(
            "Ignoring non-positive %s=%r, using %d.", ENV_CONCURRENCY, raw, default
        )
        return default
    return value


def _check_bits(errors: list, name: str, value, nullable: bool = False):
    if value is None:
        if not nullable:
            errors.append(f"{name} must not be null")
        return
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{name} must be an integer, got {type(value).__name__}")
        return
    if not (1 <= value <= 16):
        errors.append(f"{name} must be in [1, 16]")


def _regex_errors(name: str, patterns: List[str]) -> List[str]:
    errors = []
    for pattern in patterns:
        try:
            re.compile(pattern)
        except (re.error, TypeError) as exc:
            errors.append(f"{name}: invalid regex {pattern!r} ({exc})")
    return errors


# Fields whose default is None but accept an int from YAML.
_NULLABLE_INT_FIELDS = {"texcoord_bits"}


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    import dataclasses
    for key, value in data.items():
        if hasattr(obj, key):
            field_val = getattr(obj, key)
            if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
                _merge_dict_to_dataclass(field_val, value, f"{_path}{key}.")
                continue
            full_key = f"{_path}{key}"
            if key in _NULLABLE_INT_FIELDS:
                if value is None or (isinstance(value, int) and not isinstance(value, bool)):
                    setattr(obj, key, value)
                else:
                    logger.warning(
                        f"Config type mismatch for '{full_key}': expected int or "
                        f"null, got {type(value).__name__} ({value!r}). "
                        f"Using default value."
                    )
                continue
            # Reject None for fields with non-None defaults
            if value is None and field_val is not None:
                logger.warning(
                    f"Config key '{full_key}' is null but field default is "
                    f"{type(field_val).__name__}. Using default value."
                )
                continue
            expected_type = type(field_val)
            if (field_val is not None
                    and not isinstance(value, expected_type)
                    and not (expected_type is float
                             and isinstance(value, int))
                    and not (expected_type is int
                             and isinstance(value, float)
                             and value == int(value))):
                logger.warning(
                    f"Config type mismatch for '{full_key}': "
                    f"expected {expected_type.__name__}, "
                    f"got {type(value).__name__} ({value!r}). "
                    f"Using default value."
                )
                continue
            # Promote exact-integer floats to int (e.g. YAML 4.0 -> 4)
            if (expected_type is int and isinstance(value, float)
                    and value == int(value)):
                value = int(value)
            setattr(obj, key, value)
        else:
            full_key = f"{_path}{key}"
            logger.warning(f"Unknown config key ignored: '{full_key}'")
