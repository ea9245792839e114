"""
初始化数据脚本
创建：示例活动（Yatra）、示例酒店及其房间，并打印一个本地调试用的管理员令牌

示例酒店：
  Shree Niwas   1F(101-105) 2F(201-205)   Indian 卫生间在 1F
  Ganga Lodge   1F(G1-G4)                 扁平房间列表，缺省楼层
"""
import sys
sys.path.insert(0, '.')

from datetime import datetime
from decimal import Decimal
from app.database import SessionLocal, init_db
from app.models.ontology import Yatra, Hotel, ActorKind
from app.models.schemas import HotelCreate
from app.security.auth import create_access_token
from app.services.hotel_service import HotelService

SAMPLE_YATRA = {
    "name": "Vaishno Devi 2026",
    "description": "Annual group pilgrimage",
    "start_date": datetime(2026, 11, 1),
    "end_date": datetime(2026, 11, 7),
    "registration_start_date": datetime(2026, 8, 1),
    "registration_end_date": datetime(2026, 10, 15),
}


def init_yatra(db) -> Yatra:
    """初始化活动（按名称幂等）"""
    yatra = db.query(Yatra).filter(Yatra.name == SAMPLE_YATRA["name"]).first()
    if not yatra:
        yatra = Yatra(**SAMPLE_YATRA)
        db.add(yatra)
        db.commit()
        db.refresh(yatra)
    return yatra


def init_hotels(db, yatra: Yatra) -> list:
    """初始化示例酒店；已存在的同名酒店跳过"""
    hotel_defs = [
        {
            "name": "Shree Niwas",
            "address": "Near Bus Stand, Katra",
            "distance_from_bhavan": "13 km",
            "hotel_type": "A",
            "has_elevator": True,
            "floors": [
                {
                    "floor_number": "1",
                    "room_numbers": [f"10{i}" for i in range(1, 6)],
                    "rooms": [{"toilet_type": "indian", "number_of_beds": 3}] * 5,
                },
                {"floor_number": "2", "room_numbers": [f"20{i}" for i in range(1, 6)]},
            ],
        },
        {
            "name": "Ganga Lodge",
            "address": "Main Bazaar, Katra",
            "hotel_type": "B",
            "rooms": [
                {"room_number": f"G{i}", "number_of_beds": 4, "charge_per_day": Decimal("800")}
                for i in range(1, 5)
            ],
        },
    ]

    service = HotelService(db)
    hotels = []
    for hotel_def in hotel_defs:
        existing = db.query(Hotel).filter(Hotel.name == hotel_def["name"]).first()
        if existing:
            hotels.append(existing)
            continue
        hotels.append(service.create_hotel(HotelCreate(yatra_id=yatra.id, **hotel_def)))
    return hotels


def main():
    """主函数"""
    print("=" * 50)
    print("Yatra Lodging 初始化数据")
    print("=" * 50)

    # 初始化数据库
    init_db()
    print("数据库表创建完成")

    db = SessionLocal()
    try:
        yatra = init_yatra(db)
        print(f"活动: {yatra.name} (id={yatra.id})")

        for hotel in init_hotels(db, yatra):
            print(f"酒店: {hotel.name} 房间 {hotel.total_rooms} 间，空闲 {hotel.available_rooms} 间")

        print("=" * 50)
        print("初始化完成！")
        print()
        print("本地调试管理员令牌（id=1）：")
        print(f"  {create_access_token(1, ActorKind.ADMIN)}")
        print("=" * 50)
    finally:
        db.close()


if __name__ == '__main__':
    main()
