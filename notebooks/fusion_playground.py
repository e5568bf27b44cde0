import marimo

__generated_with = "0.16.5"
app = marimo.App(width="full")


@app.cell(hide_code=True)
def _(mo):
    mo.md(
        r"""
    # Pose Fusion Playground

    **What this notebook does**:
    - Drives a synthetic IMU trajectory (a slow circle) through the fusion engine
    - Compares dead reckoning, EKF-SLAM and the fused estimate
    - Lets you toggle sources and tune weights and EKF noise interactively

    **Interactive Controls**: Every plot and table below updates when a control
    changes.
    """
    )
    return


@app.cell
def _():
    import os
    import sys

    import matplotlib.pyplot as plt
    import numpy as np
    import plotly.graph_objects as go
    import seaborn as sns

    # Setup project environment: make the package importable from notebooks/
    if os.path.basename(os.getcwd()) == "notebooks":
        os.chdir("..")
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())

    from slam_fusion.fusion.fusion_engine import FusionEngine
    from slam_fusion.utils.metrics import compare_sources
    from slam_fusion.visualization import marimo_helpers as mh
    from slam_fusion.visualization.trajectory import TrajectoryRecorder
    return FusionEngine, TrajectoryRecorder, compare_sources, go, mh, np, plt, sns


@app.cell
def _(mh, mo):
    toggles = mh.create_source_toggles(dr=True, slam=True)
    weights = mh.create_weight_sliders()
    ekf = mh.create_ekf_noise_sliders()
    steps = mo.ui.slider(100, 2000, value=600, step=100, label="IMU samples", show_value=True)
    yaw_rate = mh.create_parameter_slider("Yaw rate (rad/s)", -1.0, 1.0, 0.25, 0.05)

    mh.build_control_panel(
        {
            "## Sources": None,
            "DR": toggles["dr"],
            "SLAM": toggles["slam"],
            "## Fusion weights": None,
            "w_DR": weights["dr"],
            "w_SLAM": weights["slam"],
            "## EKF noise": None,
            "R range": ekf["range_noise"],
            "R bearing": ekf["bearing_noise"],
            "Q scale": ekf["motion_noise_scale"],
            "## Trajectory": None,
            "Samples": steps,
            "Yaw rate": yaw_rate,
        }
    )
    return ekf, steps, toggles, weights, yaw_rate


@app.cell
def _(FusionEngine, TrajectoryRecorder, ekf, mh, np, steps, toggles, weights, yaw_rate):
    # Re-run the whole trajectory whenever a control changes
    config = mh.config_from_controls(
        toggles={k: toggles[k] for k in ("dr", "slam")},
        weights=weights,
        ekf=ekf,
    )
    engine = FusionEngine(config)
    recorder = TrajectoryRecorder()
    dt = 0.05
    rng = np.random.default_rng(0)
    for step in range(steps.value):
        ax_noise, gz_noise = rng.normal(0.0, [0.05, 0.01])
        result = engine.update_imu(0.8 + ax_noise, 0.0, 9.81, 0.0, 0.0, yaw_rate.value + gz_noise, dt)
        recorder.record(result, stamp=step * dt)
    return recorder, result


@app.cell
def _(mo, plt, recorder, result):
    fig, ax = plt.subplots(figsize=(8, 6))
    recorder.plot(result, ax=ax)
    fig.tight_layout()
    mo.mpl.interactive(fig)
    return


@app.cell
def _(compare_sources, mo, plt, recorder, sns):
    frames = recorder.to_dataframes()
    table = compare_sources(
        {"Dead Reckoning": frames["dr"], "EKF-SLAM": frames["slam"]}, frames["fused"]
    )
    fig_bench, ax_bench = plt.subplots(figsize=(6, 3))
    sns.barplot(data=table, x="Source", y="ATE", ax=ax_bench)
    ax_bench.set_ylabel("ATE vs fused (m)")
    fig_bench.tight_layout()
    mo.vstack(
        [mo.md("### Error vs. fused estimate"), mo.ui.table(table), mo.mpl.interactive(fig_bench)]
    )
    return


@app.cell
def _(go, mo, recorder):
    # SLAM-DR distance over time: hover for exact values
    dr_path = recorder.path("dr")
    slam_path = recorder.path("slam")
    n = min(len(dr_path), len(slam_path))
    errors = [dr_path[i].distance_to(slam_path[i]) for i in range(n)]

    fig_error = go.Figure()
    fig_error.add_trace(
        go.Scatter(
            x=list(range(n)),
            y=errors,
            mode="lines",
            name="SLAM-DR distance",
            line=dict(color="#1f77b4", width=2),
            hovertemplate="Step %{x}<br>Distance: %{y:.3f}m<extra></extra>",
        )
    )
    fig_error.update_layout(
        title="EKF-SLAM vs Dead Reckoning",
        xaxis_title="IMU sample",
        yaxis_title="Distance (m)",
        height=350,
    )
    mo.ui.plotly(fig_error)
    return


@app.cell
def _(mo, result):
    mo.md(
        f"""
    **Landmarks mapped**: {len(result.landmarks)}
    **EKF state size**: {result.slam_state_size}
    **Mean covariance**: {result.slam_mean_covariance:.4f}
    **SLAM-DR distance**: {result.slam_dr_error:.3f} m
    """
    )
    return


@app.cell
def _():
    import marimo as mo
    return (mo,)


if __name__ == "__main__":
    app.run()
