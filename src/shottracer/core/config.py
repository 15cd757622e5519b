"""Tracking engine configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings.

    All positions are normalized (0-1) display-space units. Per-frame values
    are derived from the per-second ones using `fps`.
    """

    # Frame cadence
    fps: float = 240.0

    # Ball flight
    gravity_per_s2: float = 0.15  # Apparent downward acceleration in normalized units
    launch_angle_deg: float = 60.0  # Above horizontal, toward +x
    launch_speed_per_s: float = 1.2

    # Kalman filter (per-frame units)
    process_noise_position: float = 1e-6
    process_noise_velocity: float = 1e-6
    measurement_noise: float = 2.5e-5  # (0.005)^2
    initial_position_std: float = 0.01
    initial_velocity_std: float = 0.01  # High: launch direction is a guess
    miss_covariance_growth: float = 1.2  # Multiplied into P on each missed frame

    # Search window
    search_sigma: float = 3.0
    min_search_half_size: float = 0.04

    # Tracker termination
    max_missed_frames: int = 10
    max_out_of_frame_frames: int = 5
    max_position_variance: float = 0.25  # Above this the filter has diverged
    late_measurement_history_frames: int = 32  # Frames a late ML result can still correct

    # Blob detection (OpenCV HSV scale: S and V are 0-255)
    blob_min_brightness: int = 180
    blob_max_saturation: int = 70
    blob_min_pixels: int = 3
    blob_max_pixels: int = 400
    blob_min_circularity: float = 0.6
    candidate_min_score: float = 0.3

    # ML trajectory detection
    ml_min_confidence: float = 0.3
    ml_min_points: int = 1
    ml_degraded_after_frames: int = 12

    # Impact detection from body pose
    pose_confidence_floor: float = 0.3
    wrist_smoothing_window: int = 3
    downswing_velocity: float = 0.01  # Wrist drop per frame that starts a downswing
    min_impact_speed: float = 0.015
    impact_epsilon: float = 0.004
    pose_lost_after_frames: int = 15

    # Shot completion
    min_trajectory_duration: float = 0.5  # Seconds
    idle_frames_to_complete: int = 10

    class Config:
        env_prefix = "SHOTTRACER_"
        env_file = ".env"

    @property
    def frame_period(self) -> float:
        return 1.0 / self.fps


settings = Settings()
