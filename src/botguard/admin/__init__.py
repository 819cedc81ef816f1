from botguard.admin.service import AdminService, DetectionStats, IpInspection, RequestView

__all__ = ["AdminService", "DetectionStats", "IpInspection", "RequestView"]
