# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Kernel: exception hierarchy and lifecycle protocol."""

from message_dispatcher.kernel.exceptions import (
    BrokerException,
    ConfigResolutionException,
    DecodingException,
    EncodingException,
    HandlerDuplicatedInputParameterException,
    HandlerMultipleInputParametersException,
    HandlerNoInputParameterException,
    HandlerNotFoundException,
    HandlerRegistrationException,
    MessageDispatcherException,
    MissingHeaderException,
    NonRetryableException,
    PublishException,
    RemoteResultException,
    ReplyTimeoutException,
    RetryableException,
    RoutingException,
    TopologyDeclarationException,
)
from message_dispatcher.kernel.lifecycle import Lifecycle
from message_dispatcher.kernel.types import ExchangeType, HandlerType

__all__ = [
    "BrokerException",
    "ConfigResolutionException",
    "DecodingException",
    "EncodingException",
    "ExchangeType",
    "HandlerDuplicatedInputParameterException",
    "HandlerMultipleInputParametersException",
    "HandlerNoInputParameterException",
    "HandlerNotFoundException",
    "HandlerRegistrationException",
    "HandlerType",
    "Lifecycle",
    "MessageDispatcherException",
    "MissingHeaderException",
    "NonRetryableException",
    "PublishException",
    "RemoteResultException",
    "ReplyTimeoutException",
    "RetryableException",
    "RoutingException",
    "TopologyDeclarationException",
]
