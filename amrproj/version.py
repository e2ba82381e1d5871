# -*- encoding: utf-8 -*-

__version__ = "0.1.0"
__author__ = "The amrproj developers"
