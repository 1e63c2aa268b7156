# utils/performance_monitor.py

import psutil
import time
import threading
from typing import Callable, Optional


def memory_snapshot() -> dict:
    """Resident memory of this process and of the system"""
    process = psutil.Process()
    rss = process.memory_info().rss
    memory = psutil.virtual_memory()

    return {
        'rss_mb': rss / (1024**2),
        'memory_percent': memory.percent,
        'memory_available_gb': memory.available / (1024**3),
        'threads': process.num_threads()
    }


class PerformanceMonitor:
    """
    Sample process memory in the background while images are browsed
    """

    def __init__(self, update_interval: float = 1.0):
        self.update_interval = update_interval
        self.monitoring = False
        self.thread = None
        self.callback = None
        self.peak_rss_mb = 0.0
        self._stop = threading.Event()

    def start_monitoring(self, callback: Optional[Callable[[dict], None]] = None):
        """Start monitoring process resources"""
        self.callback = callback
        self.monitoring = True
        self._stop.clear()
        self.thread = threading.Thread(target=self._monitor_loop, daemon=True,
                                       name="performance-monitor")
        self.thread.start()

    def stop_monitoring(self):
        """Stop monitoring"""
        self.monitoring = False
        self._stop.set()
        if self.thread:
            self.thread.join()
            self.thread = None

    def _monitor_loop(self):
        """Main monitoring loop"""
        while not self._stop.is_set():
            metrics = memory_snapshot()
            metrics['timestamp'] = time.time()
            self.peak_rss_mb = max(self.peak_rss_mb, metrics['rss_mb'])

            if self.callback:
                self.callback(metrics)

            self._stop.wait(self.update_interval)

    def __enter__(self):
        self.start_monitoring()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop_monitoring()
        return False
