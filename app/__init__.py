"""Incentive calculation and approval workflow engine."""
