# -*- coding: utf-8 -*-
""" Adaptive Hamiltonian Monte Carlo and No-U-Turn samplers. """

__authors__ = 'adahmc developers'
__license__ = 'MIT'

import adahmc.adapters
import adahmc.autodiff
import adahmc.config
import adahmc.errors
import adahmc.integrators
import adahmc.matrices
import adahmc.models
import adahmc.samplers
import adahmc.stagers
import adahmc.states
import adahmc.systems
import adahmc.transforms
import adahmc.transitions
import adahmc.utils
