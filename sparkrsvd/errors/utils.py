#
# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

import re
from typing import Dict, Match

from sparkrsvd.errors.error_classes import ERROR_CLASSES_MAP


class ErrorClassesReader:
    """
    A reader to load error information from the error classes map.
    """

    def __init__(self) -> None:
        self.error_info_map = ERROR_CLASSES_MAP

    def get_error_message(self, errorClass: str, messageParameters: Dict[str, str]) -> str:
        """
        Returns the completed error message by applying message parameters to the message template.
        """
        message_template = self.get_message_template(errorClass)
        # Verify message parameters.
        message_parameters_from_template = re.findall("<([a-zA-Z0-9_-]+)>", message_template)
        assert set(message_parameters_from_template) == set(messageParameters), (
            f"Undefined error message parameter for error class: {errorClass}. "
            f"Parameters: {messageParameters}"
        )

        def replace_match(match: Match[str]) -> str:
            return match.group().translate(str.maketrans("<>", "{}"))

        # Convert <> to {} only when paired.
        message_template = re.sub(r"<([^<>]*)>", replace_match, message_template)

        return message_template.format(**messageParameters)

    def get_message_template(self, errorClass: str) -> str:
        """
        Returns the message template for the corresponding error class.

        For sub error class, when given `errorClass` is "DIMENSION_MISMATCH.NUM_ROWS",
        the message of the main class and the message of the sub class are joined:

        .. code-block:: python

            "DIMENSION_MISMATCH" : {
              "message" : [
                "Cannot <operation>: operands are not aligned."
              ],
              "sub_class" : {
                "NUM_ROWS" : {
                  "message" : [
                    "Expected <expected> rows but got <actual>."
                  ]
                }
              }
            }

        In this case, this function returns:
        "Cannot <operation>: operands are not aligned. Expected <expected> rows but got <actual>."
        """
        error_classes = errorClass.split(".")
        len_error_classes = len(error_classes)
        assert len_error_classes in (1, 2)

        main_error_class = error_classes[0]
        if main_error_class in self.error_info_map:
            main_error_class_info_map = self.error_info_map[main_error_class]
        else:
            raise ValueError(f"Cannot find main error class '{main_error_class}'")

        main_message_template = "\n".join(main_error_class_info_map["message"])

        if len_error_classes == 1:
            return main_message_template

        sub_error_class = error_classes[1]
        main_error_class_subclass_info_map = main_error_class_info_map.get("sub_class", {})
        if sub_error_class in main_error_class_subclass_info_map:
            sub_error_class_info_map = main_error_class_subclass_info_map[sub_error_class]
        else:
            raise ValueError(f"Cannot find sub error class '{sub_error_class}'")

        sub_message_template = "\n".join(sub_error_class_info_map["message"])
        return main_message_template + " " + sub_message_template
