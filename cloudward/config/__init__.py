"""Engine settings (cloudward.yaml)."""
