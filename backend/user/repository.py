from typing import Optional
from sqlalchemy import select
from backend.schema.full_schema import Users


async def identify_user_by_pid(session,user_pid) -> Optional[int]:
    stmt=select(Users.id).where(Users.public_id==user_pid)
    res=await session.execute(stmt)
    user=res.first()
    return user[0] if user else None


async def get_user(session,user_id) -> Optional[Users]:
    return await session.get(Users,user_id)
