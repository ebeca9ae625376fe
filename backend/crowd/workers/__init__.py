"""Background workers: trigger intake and scheduled sweeps."""
