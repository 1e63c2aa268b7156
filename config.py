from dataclasses import dataclass, field
import logging
import yaml
from pathlib import Path

from core.filters import parse_filter_mode
from core.sort_options import parse_sort_direction, parse_sort_field

logger = logging.getLogger(__name__)


@dataclass
class NavigationConfig:
    """Configuration for sequence ordering and prefetching"""
    preload_radius: int = 20  # Images kept warm on each side of the current one
    loop_around: bool = True
    sort_field: str = "FileName"  # Options: FileName, CreationTime, LastWriteTime, FileSize
    sort_direction: str = "Ascending"  # Options: Ascending, Descending
    include_vector_formats: bool = False  # Adds .svg to the allow-list


@dataclass
class FilterConfig:
    """Configuration for label filters"""
    nsfw_filter_mode: str = "AllowAll"  # Options: AllowAll, IncludeOnly, Exclude
    nsfw_label: str = "nsfw"
    nsfw_threshold: float = 0.5
    object_filter_mode: str = "AllowAll"
    object_filter_text: str = ""
    object_filter_threshold: float = 0.3


@dataclass
class LoaderConfig:
    """Configuration for background decoding"""
    max_workers: int = 4
    max_image_dimension: int = 0  # 0 keeps full resolution


@dataclass
class ViewerConfig:
    """Viewer-wide configuration"""
    log_level: str = "INFO"
    log_dir: str = "logs"

    navigation: NavigationConfig = field(default_factory=NavigationConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    loader: LoaderConfig = field(default_factory=LoaderConfig)

    def normalize(self) -> 'ViewerConfig':
        """Clamp values and replace unknown option names with defaults"""
        nav = self.navigation
        nav.preload_radius = max(0, int(nav.preload_radius))
        nav.sort_field = parse_sort_field(nav.sort_field).value
        nav.sort_direction = parse_sort_direction(nav.sort_direction).value

        flt = self.filters
        flt.nsfw_filter_mode = parse_filter_mode(flt.nsfw_filter_mode).value
        flt.object_filter_mode = parse_filter_mode(flt.object_filter_mode).value
        flt.nsfw_threshold = min(max(float(flt.nsfw_threshold), 0.0), 1.0)
        flt.object_filter_threshold = min(max(float(flt.object_filter_threshold), 0.0), 1.0)
        flt.object_filter_text = flt.object_filter_text or ""

        self.loader.max_workers = max(1, int(self.loader.max_workers))
        self.loader.max_image_dimension = max(0, int(self.loader.max_image_dimension))

        self.log_level = str(self.log_level).upper()
        if self.log_level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            self.log_level = "INFO"
        return self

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        self.normalize()
        config_dict = {
            'log_level': self.log_level,
            'log_dir': self.log_dir,
            'navigation': {
                'preload_radius': self.navigation.preload_radius,
                'loop_around': self.navigation.loop_around,
                'sort_field': self.navigation.sort_field,
                'sort_direction': self.navigation.sort_direction,
                'include_vector_formats': self.navigation.include_vector_formats
            },
            'filters': {
                'nsfw_filter_mode': self.filters.nsfw_filter_mode,
                'nsfw_label': self.filters.nsfw_label,
                'nsfw_threshold': self.filters.nsfw_threshold,
                'object_filter_mode': self.filters.object_filter_mode,
                'object_filter_text': self.filters.object_filter_text,
                'object_filter_threshold': self.filters.object_filter_threshold
            },
            'loader': {
                'max_workers': self.loader.max_workers,
                'max_image_dimension': self.loader.max_image_dimension
            }
        }

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'ViewerConfig':
        """
        Load configuration from YAML file.

        A missing file gives the defaults; an unreadable one logs a warning
        and also gives the defaults.
        """
        if not Path(path).exists():
            return cls()  # Return default config

        try:
            with open(path, 'r') as f:
                config_dict = yaml.safe_load(f) or {}
            if not isinstance(config_dict, dict):
                raise ValueError("top level must be a mapping")
            return cls._from_dict(config_dict).normalize()
        except (OSError, yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Could not read config %s, using defaults: %s", path, e)
            return cls().normalize()

    @classmethod
    def _from_dict(cls, config_dict: dict) -> 'ViewerConfig':
        config = cls()

        config.log_level = config_dict.get('log_level', config.log_level)
        config.log_dir = config_dict.get('log_dir', config.log_dir)

        # Load navigation settings
        if 'navigation' in config_dict:
            nav = config_dict['navigation']
            config.navigation = NavigationConfig(
                preload_radius=nav.get('preload_radius', config.navigation.preload_radius),
                loop_around=bool(nav.get('loop_around', config.navigation.loop_around)),
                sort_field=nav.get('sort_field', config.navigation.sort_field),
                sort_direction=nav.get('sort_direction', config.navigation.sort_direction),
                include_vector_formats=bool(nav.get('include_vector_formats',
                                                    config.navigation.include_vector_formats))
            )

        # Load filter settings
        if 'filters' in config_dict:
            flt = config_dict['filters']
            config.filters = FilterConfig(
                nsfw_filter_mode=flt.get('nsfw_filter_mode', config.filters.nsfw_filter_mode),
                nsfw_label=flt.get('nsfw_label', config.filters.nsfw_label),
                nsfw_threshold=flt.get('nsfw_threshold', config.filters.nsfw_threshold),
                object_filter_mode=flt.get('object_filter_mode', config.filters.object_filter_mode),
                object_filter_text=flt.get('object_filter_text', config.filters.object_filter_text),
                object_filter_threshold=flt.get('object_filter_threshold',
                                                config.filters.object_filter_threshold)
            )

        # Load loader settings
        if 'loader' in config_dict:
            ld = config_dict['loader']
            config.loader = LoaderConfig(
                max_workers=ld.get('max_workers', config.loader.max_workers),
                max_image_dimension=ld.get('max_image_dimension', config.loader.max_image_dimension)
            )

        return config
