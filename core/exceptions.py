"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類：
- 參照完整性：RoundNotFound / UnknownDevice / UnknownParticipant / LeaseNotFound
- 寫入被拒：RoundClosed（回合已完成，非致命）
- 輸入錯誤：InvalidUnit / InvalidConfiguration
- 狀態錯誤：InvalidStateTransition
- 清理失敗：SagaStepFailed（暫時性錯誤，重新執行整個 Saga 即可）
"""


class ScoringException(Exception):
    """所有計分異常的基類"""
    pass


# ============ Round 相關異常 ============

class RoundNotFound(ScoringException):
    """回合不存在"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


class RoundClosed(ScoringException):
    """回合已完成，不接受任何寫入"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} is already completed")


# ============ 參照完整性異常 ============

class UnknownDevice(ScoringException):
    """裝置沒有登記在這個回合"""
    def __init__(self, round_id, device_id):
        self.round_id = round_id
        self.device_id = device_id
        super().__init__(f"Device {device_id} is not registered in round {round_id}")


class UnknownParticipant(ScoringException):
    """參賽者不屬於這個回合"""
    def __init__(self, round_id, participant_id):
        self.round_id = round_id
        self.participant_id = participant_id
        super().__init__(
            f"Participant {participant_id} is not registered in round {round_id}"
        )


class LeaseNotFound(ScoringException):
    """設備租借紀錄不存在"""
    def __init__(self, lease_id):
        self.lease_id = lease_id
        super().__init__(f"Equipment lease {lease_id} not found")


# ============ 洞序相關異常 ============

class InvalidConfiguration(ScoringException):
    """開球洞 / 總洞數設定不合法"""
    pass


class InvalidUnit(ScoringException):
    """洞號不在回合的洞序內"""
    def __init__(self, unit, total_units):
        self.unit = unit
        self.total_units = total_units
        super().__init__(f"Unit {unit} is not part of a {total_units}-unit sequence")


# ============ 狀態轉換異常 ============

class InvalidStateTransition(ScoringException):
    """非法的狀態轉換"""
    pass


# ============ Saga 相關異常 ============

class SagaStepFailed(ScoringException):
    """
    完成 Saga 的某個步驟失敗

    每個步驟都是冪等的，呼叫者只需要從頭重新執行 Saga
    """
    def __init__(self, step, round_id, cause=None):
        self.step = step
        self.round_id = round_id
        self.cause = cause
        super().__init__(f"Completion step '{step}' failed for round {round_id}: {cause}")
