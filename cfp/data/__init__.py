"""Data access: provider clients, crawler boundary and state stores."""
