"""
HPO Search Engine
=================

Responsibility:
- Cross product expansion of the neural network hyperparameter grid.
- Cross-validated evaluation of every grid row on a fresh model.
- Best-configuration selection by mean accuracy (ties keep the earliest row).
- Persistence of the annotated grid, fold scores, best model and history.
"""

from .hpo_search_engine import HPOSearchEngine, HyperparameterGridRow, SearchResult, expand_grid

__all__ = ['HPOSearchEngine', 'HyperparameterGridRow', 'SearchResult', 'expand_grid']
