"""
core — 框架核心

統一匯出所有核心元件，方便外部 import。

用法：
    from core import BasePage, Locator, Flow, action, expect
    from core import TestCase, run_suite
    from core import event_bus, plugin_manager, middleware_chain
    from core import ElementNotReadyError, FlowError
"""

from core.appium_provider import AppiumElementProvider, AppiumLaneProvisioner
from core.base_page import BasePage
from core.cancellation import CancelToken
from core.capture import FailureCapture
from core.event_bus import event_bus
from core.exceptions import (
    ActionRejectedError,
    CancelledError,
    CaptureError,
    ElementNotReadyError,
    FlowError,
    HarnessError,
    InfrastructureError,
    LaneIsolationError,
    LaneStateError,
    PageAssertionError,
    PageError,
    PageNotLoadedError,
    PluginError,
    ProvisioningError,
    RetryExhaustedError,
    SessionLostError,
    SuiteError,
    TestTimeoutError,
    WaitTimeoutError,
)
from core.flow import Flow, Step, action, expect, run_flow
from core.lane import Lane, LanePool, LaneState
from core.locator import Locator
from core.middleware import MiddlewareContext, middleware_chain
from core.plugin_manager import Plugin, plugin_manager
from core.provider import ActionKind, ElementProvider
from core.result_db import ResultDB
from core.results import FailureArtifact, Outcome, SuiteResult, TestResult
from core.retry import RetryPolicy, whitelist, with_retry
from core.scheduler import Scheduler, TestCase, run_suite
from core.session import LaneSession
from core.wait import FluentWait, WaitSpec, wait_for, wait_until

__all__ = [
    # Page / Flow
    "BasePage",
    "Locator",
    "Flow",
    "Step",
    "action",
    "expect",
    "run_flow",
    # Provider
    "ElementProvider",
    "ActionKind",
    "AppiumElementProvider",
    "AppiumLaneProvisioner",
    # Engines
    "CancelToken",
    "WaitSpec",
    "FluentWait",
    "wait_until",
    "wait_for",
    "RetryPolicy",
    "whitelist",
    "with_retry",
    # Lanes / Scheduling
    "Lane",
    "LanePool",
    "LaneState",
    "LaneSession",
    "Scheduler",
    "TestCase",
    "run_suite",
    # Results
    "FailureCapture",
    "FailureArtifact",
    "Outcome",
    "TestResult",
    "SuiteResult",
    "ResultDB",
    # Infrastructure
    "event_bus",
    "plugin_manager",
    "Plugin",
    "middleware_chain",
    "MiddlewareContext",
    # Exceptions
    "HarnessError",
    "WaitTimeoutError",
    "PageError",
    "ElementNotReadyError",
    "ActionRejectedError",
    "PageNotLoadedError",
    "PageAssertionError",
    "RetryExhaustedError",
    "FlowError",
    "CancelledError",
    "TestTimeoutError",
    "InfrastructureError",
    "ProvisioningError",
    "SessionLostError",
    "LaneStateError",
    "LaneIsolationError",
    "CaptureError",
    "SuiteError",
    "PluginError",
]
