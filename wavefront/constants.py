"""Shared constants"""

import math

# Gravitational acceleration (ft/s²). All wave physics runs in feet.
GRAVITY = 32.174

TWO_PI = 2.0 * math.pi

# Output vertex layout: x, y, amplitudeFactor, directionOffset, phaseOffset, blendWeight
VERTEX_FLOATS = 6

# Packed terrain contour record size (32-bit words)
FLOATS_PER_CONTOUR = 13

# Minimum distance for inverse-distance weighting of contour heights
IDW_MIN_DIST = 0.1

# Worker pool sizing
MAX_WORKERS = 4
