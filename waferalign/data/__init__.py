"""Patch extraction and known geometric transformations for alignment tests."""