"""
Marimo UI widget helpers for fusion parameter controls.

Provides standardized widget creation functions for the pose sources, the
fusion weights, the feature tracker thresholds and the EKF-SLAM noise model,
plus ``config_from_controls`` to turn widget values into a
``SlamFusionConfig``. All widgets are designed to work with Marimo's
reactive execution model.

Example:
    import marimo as mo
    from slam_fusion.visualization.marimo_helpers import (
        create_source_toggles,
        create_weight_sliders,
        config_from_controls,
    )

    # Create reactive controls
    toggles = create_source_toggles()
    weights = create_weight_sliders()

    # Use in dependent cell
    config = config_from_controls(toggles=toggles, weights=weights)
"""

from dataclasses import replace

import marimo as mo

from slam_fusion.config import SlamFusionConfig


def create_parameter_slider(
    name: str,
    min_val: float,
    max_val: float,
    default: float,
    step: float | None = None,
) -> mo.ui.slider:
    """
    Create a standardized parameter slider with consistent styling.

    Args:
        name: Slider label (e.g., "Range noise (m)")
        min_val: Minimum slider value
        max_val: Maximum slider value
        default: Default/initial value
        step: Step size (default: (max-min)/100)

    Returns:
        Marimo slider widget with show_value=True
    """
    if step is None:
        step = (max_val - min_val) / 100

    return mo.ui.slider(
        min_val,
        max_val,
        value=default,
        step=step,
        label=name,
        show_value=True,
    )


def create_source_toggles(
    dr: bool = True, slam: bool = False, visual: bool = False
) -> dict[str, mo.ui.switch]:
    """
    Create switches enabling each pose source.

    Returns:
        Dictionary with keys 'dr', 'slam', 'visual'

    Example:
        toggles = create_source_toggles(slam=True)
        engine.enable_slam(toggles["slam"].value)
    """
    return {
        "dr": mo.ui.switch(value=dr, label="Dead Reckoning"),
        "slam": mo.ui.switch(value=slam, label="EKF-SLAM"),
        "visual": mo.ui.switch(value=visual, label="Visual Odometry"),
    }


def create_weight_sliders(
    dr_default: float = 0.3,
    slam_default: float = 0.4,
    visual_default: float = 0.5,
) -> dict[str, mo.ui.slider]:
    """
    Create sliders for the fusion blend weights.

    Weights are renormalized over the enabled sources, so only their ratios
    matter.

    Returns:
        Dictionary with keys 'dr', 'slam', 'visual'
    """
    return {
        "dr": create_parameter_slider("DR weight", 0.0, 1.0, dr_default, 0.05),
        "slam": create_parameter_slider("SLAM weight", 0.0, 1.0, slam_default, 0.05),
        "visual": create_parameter_slider("VO weight", 0.0, 1.0, visual_default, 0.05),
    }


def create_tracker_sliders(
    interior_default: float = 20.0,
    border_default: float = 25.0,
    radius_default: float = 20.0,
) -> dict[str, mo.ui.slider]:
    """
    Create sliders for the feature tracker detection and matching thresholds.

    Returns:
        Dictionary with keys 'interior_threshold', 'border_threshold',
        'match_radius'
    """
    return {
        "interior_threshold": create_parameter_slider(
            "Corner threshold", 5.0, 100.0, interior_default, 1.0
        ),
        "border_threshold": create_parameter_slider(
            "Border threshold", 5.0, 100.0, border_default, 1.0
        ),
        "match_radius": create_parameter_slider(
            "Match radius (px)", 5.0, 60.0, radius_default, 1.0
        ),
    }


def create_ekf_noise_sliders(
    range_default: float = 0.1,
    bearing_default: float = 0.05,
    motion_default: float = 0.01,
) -> dict[str, mo.ui.slider]:
    """
    Create sliders for the EKF-SLAM measurement (R) and motion (Q) noise.

    Returns:
        Dictionary with keys 'range_noise', 'bearing_noise',
        'motion_noise_scale'

    Example:
        ekf = create_ekf_noise_sliders()
        R = np.diag([ekf["range_noise"].value, ekf["bearing_noise"].value])
    """
    return {
        "range_noise": create_parameter_slider("R range", 0.01, 1.0, range_default, 0.01),
        "bearing_noise": create_parameter_slider(
            "R bearing", 0.005, 0.5, bearing_default, 0.005
        ),
        "motion_noise_scale": create_parameter_slider(
            "Q scale", 0.001, 0.1, motion_default, 0.001
        ),
    }


def create_time_scrubber(max_timesteps: int, default: int = 0) -> mo.ui.slider:
    """
    Create a time scrubber slider for trajectory playback.

    Example:
        time_slider = create_time_scrubber(len(results))
        result = results[time_slider.value]
    """
    return mo.ui.slider(
        0,
        max(max_timesteps - 1, 0),
        value=default,
        step=1,
        label="Trajectory Progress",
        show_value=True,
    )


def _values(widgets):
    return {key: widget.value for key, widget in (widgets or {}).items()}


def config_from_controls(
    toggles=None, weights=None, tracker=None, ekf=None, base=None
) -> SlamFusionConfig:
    """
    Build a configuration from widget values.

    Args:
        toggles: Output of ``create_source_toggles``
        weights: Output of ``create_weight_sliders``
        tracker: Output of ``create_tracker_sliders``
        ekf: Output of ``create_ekf_noise_sliders``
        base: Configuration to override (default: reference configuration)

    Returns:
        SlamFusionConfig with the widget values applied. Any object with a
        ``value`` attribute is accepted in place of a widget.
    """
    config = base if base is not None else SlamFusionConfig()

    fusion_overrides = {}
    for key, value in _values(toggles).items():
        fusion_overrides[f"{key}_enabled"] = bool(value)
    for key, value in _values(weights).items():
        fusion_overrides[f"{key}_weight"] = float(value)

    return replace(
        config,
        fusion=replace(config.fusion, **fusion_overrides),
        tracker=replace(config.tracker, **_values(tracker)),
        ekf=replace(config.ekf, **_values(ekf)),
    )


def build_control_panel(widgets: dict):
    """
    Build a standardized vertical control panel from widgets.

    Args:
        widgets: Dictionary of {label: widget}; labels starting with "##"
            are rendered as section headers

    Returns:
        Marimo vstack containing labeled widgets

    Example:
        controls = build_control_panel({
            "## Sources": None,
            "DR": toggles["dr"],
            "SLAM": toggles["slam"],
        })
    """
    elements = []
    for label, widget in widgets.items():
        if label.startswith("##"):  # Section header
            elements.append(mo.md(label))
        else:
            elements.append(widget)

    return mo.vstack(elements)
