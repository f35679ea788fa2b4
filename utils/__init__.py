from utils.logger import bind_lane, current_lane, lane_log_tail, logger

__all__ = [
    "logger",
    "bind_lane",
    "current_lane",
    "lane_log_tail",
]
