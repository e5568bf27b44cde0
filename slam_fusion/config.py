"""
Tunable constants for every estimator, grouped in one auditable structure.

The default values below are hand-tuned heuristics. They are configuration,
not hard requirements: override them with ``dataclasses.replace`` or build a
whole configuration from nested dictionaries with ``SlamFusionConfig.from_dict``.

Examples
--------
>>> from dataclasses import replace
>>> from slam_fusion.config import SlamFusionConfig
>>> config = SlamFusionConfig()
>>> tracker = replace(config.tracker, grid_pitch=16, interior_threshold=28)
>>> config = replace(config, tracker=tracker)
>>> SlamFusionConfig.from_dict({"fusion": {"visual_weight": 0.6}}).fusion.visual_weight
0.6
"""

from dataclasses import asdict, dataclass, field, fields


@dataclass(frozen=True)
class FeatureTrackerConfig:
    """Detection, matching and flow-integration parameters of the feature tracker."""

    # Detection
    grid_pitch: int = 12
    interior_threshold: float = 20.0
    border_margin: int = 8
    border_step: int = 10
    border_threshold: float = 25.0
    max_features: int = 150
    # Matching
    max_match_candidates: int = 60
    match_radius: float = 20.0
    min_matches: int = 3
    # Outlier rejection and motion estimation
    outlier_tolerance: float = 10.0
    max_flow_per_frame: float = 10.0
    noise_floor: float = 0.5
    focal_length: float = 500.0
    frame_time: float = 1.0 / 30.0
    velocity_smoothing: float = 0.9
    max_velocity: float = 1.5
    initial_depth: float = 2.0
    nominal_depth: float = 2.0
    depth_blend: float = 0.95
    history_size: int = 3


@dataclass(frozen=True)
class EkfSlamConfig:
    """Noise model and initialization constants of the EKF-SLAM engine."""

    initial_pose_variance: float = 0.01
    motion_noise_scale: float = 0.01
    landmark_variance_inflation: float = 1.01
    new_landmark_variance: float = 100.0
    max_landmark_variance: float = 1.0e4
    range_noise: float = 0.1
    bearing_noise: float = 0.05
    min_range: float = 1e-6
    degenerate_determinant: float = 1e-10


@dataclass(frozen=True)
class VisualOdometryConfig:
    """Parameters of the reduced-fidelity visual odometry estimator."""

    grid_pitch: int = 20
    corner_threshold: float = 50.0
    max_match_candidates: int = 50
    match_radius: float = 30.0
    min_matches: int = 5
    translation_scale: float = 0.001
    yaw_min_features: int = 10
    yaw_feature_subset: int = 20
    yaw_scale: float = 1e-6
    z_amplitude: float = 0.1
    z_period: float = 5.0
    tracking_threshold: float = 0.3
    map_point_interval: int = 20
    map_point_min_matches: int = 10
    map_point_spacing: float = 0.5
    map_point_capacity: int = 100
    display_min_points: int = 10
    display_warmup_frames: int = 30
    display_ring_size: int = 20
    display_ring_radius: float = 2.0
    min_visual_weight: float = 0.1
    max_visual_weight: float = 0.8


@dataclass(frozen=True)
class FusionConfig:
    """Dead reckoning, synthetic landmark and blending parameters of the fusion engine."""

    dr_weight: float = 0.3
    slam_weight: float = 0.4
    visual_weight: float = 0.5
    speed_gain: float = 0.5
    dr_enabled: bool = True
    slam_enabled: bool = False
    visual_enabled: bool = False
    landmarks: tuple = (
        (2.0, 0.0),
        (3.0, 1.0),
        (1.0, 2.0),
        (4.0, 3.0),
        (-2.0, 1.0),
        (-1.0, 3.0),
    )
    max_landmark_range: float = 5.0
    range_jitter: float = 0.025
    bearing_jitter: float = 0.005
    seed: int | None = None


@dataclass(frozen=True)
class SlamFusionConfig:
    """All tunables, one section per component."""

    tracker: FeatureTrackerConfig = field(default_factory=FeatureTrackerConfig)
    ekf: EkfSlamConfig = field(default_factory=EkfSlamConfig)
    visual: VisualOdometryConfig = field(default_factory=VisualOdometryConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)

    @classmethod
    def from_dict(cls, data):
        """
        Build a configuration from nested dictionaries.

        Parameters
        ----------
        data : dict
            ``{"tracker": {...}, "ekf": {...}, "visual": {...}, "fusion": {...}}``;
            missing sections and keys keep their reference defaults.

        Raises
        ------
        ValueError
            If a section or parameter name is unknown.
        """
        sections = {f.name: f for f in fields(cls)}
        kwargs = {}
        for name, values in dict(data).items():
            if name not in sections:
                raise ValueError(
                    f"Unknown configuration section '{name}'. "
                    f"Available sections: {sorted(sections)}"
                )
            section_cls = sections[name].default_factory
            known = {f.name for f in fields(section_cls)}
            for key in values:
                if key not in known:
                    raise ValueError(
                        f"Unknown parameter '{name}.{key}'. Available: {sorted(known)}"
                    )
            values = dict(values)
            if name == "fusion" and "landmarks" in values:
                values["landmarks"] = tuple(tuple(lm) for lm in values["landmarks"])
            kwargs[name] = section_cls(**values)
        return cls(**kwargs)

    def to_dict(self):
        """Nested plain-dict view, accepted back by ``from_dict``."""
        return asdict(self)
