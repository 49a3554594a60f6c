"""FX conversion platform: conversion engine and transactional outbox."""

__version__ = "0.1.0"
