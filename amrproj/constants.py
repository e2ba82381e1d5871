# -*- encoding: utf-8 -*-

# Adiabatic index of a monatomic ideal gas, used for sound speeds
DEFAULT_GAMMA = 5.0 / 3.0

# Tokens accepted in place of a coordinate to select the center of the box
BOX_CENTER_TOKENS = ("bc", "boxcenter")

# Name of the unit that leaves code values untouched
STANDARD_UNIT = "standard"

# Relative tolerance used to decide whether a cell is larger than a pixel
CELL_PIXEL_RTOL = 1e-9
