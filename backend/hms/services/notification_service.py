"""
Notification service — persists user notifications and pushes them live.

Every notification is committed first and then pushed to the recipient as
``{"type": "notification", "notification": {...}}``. The push is only an
invalidation signal for the client; the stored row is the source of truth.
Domain events additionally broadcast role-scoped events so dashboards of
admins, nurses and OPD managers can refresh.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hms.models import UserNotification
from hms.services.notification_hub import NotificationHub

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {"appointment", "prescription", "schedule", "profile",
                      "admission", "discharge", "system"}


class NotificationService:
    def __init__(self, session: AsyncSession, hub: NotificationHub):
        self.session = session
        self.hub = hub

    # ── Queries ──────────────────────────────────────────────────────────────

    async def list_for_user(self, user_id: str) -> list[UserNotification]:
        result = await self.session.execute(
            select(UserNotification)
            .where(UserNotification.user_id == user_id)
            .order_by(UserNotification.created_at.desc())
        )
        return list(result.scalars())

    async def list_for_role(self, role: str) -> list[UserNotification]:
        result = await self.session.execute(
            select(UserNotification)
            .where(UserNotification.user_role == role)
            .order_by(UserNotification.created_at.desc())
        )
        return list(result.scalars())

    async def get(self, notification_id: str) -> UserNotification | None:
        return await self.session.get(UserNotification, notification_id)

    # ── Mutations ────────────────────────────────────────────────────────────

    async def create_and_push(self, *, user_id: str, user_role: str, type: str, title: str,
                              message: str, related_entity_type: str | None = None,
                              related_entity_id: str | None = None,
                              metadata: dict | None = None) -> UserNotification:
        notification = UserNotification(
            user_id=user_id,
            user_role=user_role,
            type=type,
            title=title,
            message=message,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            is_read=False,
            extra=metadata,
        )
        self.session.add(notification)
        # must be visible to other connections before the push
        await self.session.commit()

        await self.hub.send_to_user(user_id, {
            "type": "notification",
            "notification": notification.to_dict(),
        })
        logger.info("Notification %s (%s) pushed to %s", notification.id, type, user_id)
        return notification

    async def mark_read(self, notification_id: str) -> UserNotification | None:
        notification = await self.get(notification_id)
        if notification is None:
            return None
        notification.is_read = True
        await self.session.flush()
        return notification

    async def mark_all_read(self, user_id: str) -> int:
        result = await self.session.execute(
            update(UserNotification)
            .where(UserNotification.user_id == user_id, UserNotification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def delete(self, notification_id: str) -> bool:
        notification = await self.get(notification_id)
        if notification is None:
            return False
        await self.session.delete(notification)
        await self.session.flush()
        return True

    # ── Domain events ────────────────────────────────────────────────────────

    async def notify_appointment_created(self, appointment_id: str, doctor_id: str,
                                         patient_name: str, appointment_date: str,
                                         appointment_time: str, department: str | None = None,
                                         location: str | None = None,
                                         patient_id: str | None = None) -> None:
        location_info = f" at {location}" if location else ""
        dept_info = f" ({department})" if department else ""
        details = {"appointment_date": appointment_date, "appointment_time": appointment_time,
                   "department": department, "location": location}

        await self.create_and_push(
            user_id=doctor_id,
            user_role="DOCTOR",
            type="appointment",
            title="New Appointment Booked",
            message=(f"{patient_name} has booked an appointment for {appointment_date} "
                     f"at {appointment_time}{dept_info}{location_info}"),
            related_entity_type="appointment",
            related_entity_id=appointment_id,
            metadata={**details, "patient_name": patient_name},
        )

        if patient_id:
            await self.create_and_push(
                user_id=patient_id,
                user_role="PATIENT",
                type="appointment",
                title="Appointment Confirmed",
                message=(f"Your appointment for {appointment_date} at {appointment_time}"
                         f"{dept_info}{location_info} has been confirmed"),
                related_entity_type="appointment",
                related_entity_id=appointment_id,
                metadata=details,
            )

        await self.hub.broadcast({"type": "admin_notification", "event": "appointment_created",
                                  "appointment_id": appointment_id, "department": department,
                                  "location": location}, role="ADMIN")

    async def notify_appointment_updated(self, appointment_id: str, doctor_id: str,
                                         patient_name: str, status: str,
                                         appointment_date: str) -> None:
        await self.create_and_push(
            user_id=doctor_id,
            user_role="DOCTOR",
            type="appointment",
            title=f"Appointment {status}",
            message=f"Appointment with {patient_name} on {appointment_date} has been {status.lower()}",
            related_entity_type="appointment",
            related_entity_id=appointment_id,
            metadata={"status": status, "patient_name": patient_name,
                      "appointment_date": appointment_date},
        )
        await self.hub.broadcast({"type": "admin_notification", "event": "appointment_updated",
                                  "appointment_id": appointment_id, "status": status}, role="ADMIN")

    async def notify_prescription_created(self, prescription_id: str, patient_id: str,
                                          patient_name: str, doctor_name: str) -> None:
        await self.create_and_push(
            user_id=patient_id,
            user_role="PATIENT",
            type="prescription",
            title="New Prescription",
            message=f"Dr. {doctor_name} has created a new prescription for you",
            related_entity_type="prescription",
            related_entity_id=prescription_id,
            metadata={"doctor_name": doctor_name, "patient_name": patient_name},
        )
        await self.hub.broadcast({"type": "admin_notification", "event": "prescription_created",
                                  "prescription_id": prescription_id}, role="ADMIN")

    async def notify_schedule_updated(self, doctor_id: str, schedule_id: str, date: str,
                                      action: str) -> None:
        await self.create_and_push(
            user_id=doctor_id,
            user_role="DOCTOR",
            type="schedule",
            title=f"Schedule {action}",
            message=f"Your schedule for {date} has been {action.lower()}",
            related_entity_type="schedule",
            related_entity_id=schedule_id,
            metadata={"date": date, "action": action},
        )
        event = {"event": "schedule_updated", "doctor_id": doctor_id, "schedule_id": schedule_id}
        await self.hub.broadcast({"type": "admin_notification", **event}, role="ADMIN")
        await self.hub.broadcast({"type": "opd_notification", **event}, role="OPD_MANAGER")

    async def notify_profile_updated(self, user_id: str, user_role: str, profile_type: str) -> None:
        await self.create_and_push(
            user_id=user_id,
            user_role=user_role,
            type="profile",
            title="Profile Updated",
            message=f"Your {profile_type} profile has been successfully updated",
            related_entity_type="profile",
            related_entity_id=user_id,
            metadata={"profile_type": profile_type},
        )
        await self.hub.broadcast({"type": "admin_notification", "event": "profile_updated",
                                  "user_id": user_id, "user_role": user_role}, role="ADMIN")

    async def notify_patient_admission(self, patient_name: str, doctor_id: str,
                                       admission_id: str) -> None:
        await self.create_and_push(
            user_id=doctor_id,
            user_role="DOCTOR",
            type="admission",
            title="New Patient Admission",
            message=f"{patient_name} has been admitted under your care",
            related_entity_type="admission",
            related_entity_id=admission_id,
            metadata={"patient_name": patient_name},
        )
        event = {"event": "patient_admitted", "admission_id": admission_id}
        await self.hub.broadcast({"type": "admin_notification", **event}, role="ADMIN")
        await self.hub.broadcast({"type": "nurse_notification", **event}, role="NURSE")
        await self.hub.broadcast({"type": "opd_notification", **event}, role="OPD_MANAGER")

    async def notify_patient_discharge(self, patient_name: str, doctor_id: str,
                                       admission_id: str) -> None:
        await self.create_and_push(
            user_id=doctor_id,
            user_role="DOCTOR",
            type="discharge",
            title="Patient Discharged",
            message=f"{patient_name} has been discharged from your care",
            related_entity_type="admission",
            related_entity_id=admission_id,
            metadata={"patient_name": patient_name},
        )
        event = {"event": "patient_discharged", "admission_id": admission_id}
        await self.hub.broadcast({"type": "admin_notification", **event}, role="ADMIN")
        await self.hub.broadcast({"type": "nurse_notification", **event}, role="NURSE")

    async def notify_system_message(self, user_id: str, user_role: str, title: str,
                                    message: str) -> UserNotification:
        return await self.create_and_push(
            user_id=user_id,
            user_role=user_role,
            type="system",
            title=title,
            message=message,
        )
