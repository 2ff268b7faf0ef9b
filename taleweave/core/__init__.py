"""Story engine core: records, economy, objectives, rotation and turns."""
