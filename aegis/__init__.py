"""
Aegis Portfolio Scanner

Runs pattern detectors across a portfolio of repositories, scores each target,
and folds the results into one portfolio summary with ranked recommendations,
due-dated action items and compliance checks.
"""

import logging

__version__ = "1.0.0"
__author__ = "Aegis Security Team"
__description__ = "Portfolio security scanner and compliance checker"

# Handlers are installed by the CLI through aegis.utils.logger.setup_logger
logging.getLogger(__name__).addHandler(logging.NullHandler())
