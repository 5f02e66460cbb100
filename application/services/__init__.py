from .rating_service import RatingService
from .refresher import LatestRateRefresher, RefresherState

__all__ = ['LatestRateRefresher', 'RatingService', 'RefresherState']
