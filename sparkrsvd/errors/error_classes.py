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

import json


ERROR_CLASSES_JSON = """
{
  "DIMENSION_MISMATCH": {
    "message": [
      "Cannot <operation>: operands are not aligned."
    ],
    "sub_class": {
      "BLOCK_SIZE": {
        "message": [
          "Block size <left> does not match block size <right>."
        ]
      },
      "NOT_TALL": {
        "message": [
          "Expected at least as many rows as columns but got <numRows> x <numCols>."
        ]
      },
      "NUM_ROWS": {
        "message": [
          "Expected <expected> rows but got <actual>."
        ]
      },
      "PARTITION_SIZE": {
        "message": [
          "Expected <expected> blocks per partition but got <actual>."
        ]
      },
      "SHAPE": {
        "message": [
          "Expected shape <expected> but got <actual>."
        ]
      }
    }
  },
  "INDEX_OUT_OF_BOUNDS": {
    "message": [
      "Entry (<row>, <col>) is outside of a <numRows> x <numCols> matrix."
    ]
  },
  "INVALID_CONFIG": {
    "message": [
      "Invalid RSVD configuration: <reason>"
    ]
  },
  "NON_FINITE_VALUES": {
    "message": [
      "Non-finite values found after <stage>. Check the input for NaN or infinite entries."
    ]
  }
}
"""

ERROR_CLASSES_MAP = json.loads(ERROR_CLASSES_JSON)
