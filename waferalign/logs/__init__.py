"""Logging configuration, context, spans, formatters, metrics, rotation and live log feeds."""