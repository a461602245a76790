# -*- coding: utf-8 -*-
"""
exceptions raised by the consensus NMF stages

@author: C Heiser
"""


class ConsensusNMFError(Exception):
    """Base class for errors that abort a pipeline stage"""


class FormatMismatchError(ConsensusNMFError):
    """Input matrix is malformed or its identifiers don't match its dimensions"""


class InvalidRankError(ConsensusNMFError):
    """Requested number of components is outside of (1, min(cells, genes))"""


class IncompleteRankError(ConsensusNMFError):
    """Not every replicate for a rank has been factorized or combined yet"""


class EmptyClusterError(ConsensusNMFError):
    """Local density filtering removed every member of a consensus cluster"""
