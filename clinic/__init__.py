"""Clinic application: master data, patients, OPD/IPD, orders and billing."""
