# Business Services
#
# 服务模块按需导入，例如:
#     from app.services.registration_service import RegistrationService
