"""Load Forecasting - Time-bucketed load history and short-horizon projections"""

from .load_forecaster import LoadForecaster, LoadObservation, bucket_for

__all__ = [
    'LoadForecaster',
    'LoadObservation',
    'bucket_for'
]
